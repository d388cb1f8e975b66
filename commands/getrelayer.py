def execute(raw_command: str, container):
    relayer = container.settings.relayer
    return f"RELAYER: {container.admission.relayer_pubkey} {container.admission.asset} {relayer.asset_decimals}\r\n"
