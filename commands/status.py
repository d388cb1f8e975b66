from relayer.status import query_status


def execute(raw_command: str, container):
    parts = raw_command.split()
    if len(parts) != 2:
        return "ERROR: Usage: status <transaction-id>\r\n"

    state = query_status(container.store, parts[1].lower())
    if state is None:
        return "ERROR: Transaction not found\r\n"
    return f"STATUS: {state.value}\r\n"
