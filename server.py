import argparse
import functools
import logging
import socket
import sys
import threading

# Project modules
import config
import relay_logging
from app.container import ServiceContainer
from errors import ConfigurationError, DatabaseError, DependencyError


logger = logging.getLogger(__name__)

SERVER_STOP_FLAG = threading.Event()
_ACCEPT_POLL_SECONDS = 0.5


def request_shutdown() -> None:
    SERVER_STOP_FLAG.set()


def dispatch(raw: str, container: ServiceContainer) -> str:
    """Run one command line through its handler and return the response text."""
    parts = raw.split()
    if not parts:
        return "ERROR: Received empty command.\r\n"
    command_name = parts[0].lower()

    handler = container.command_handlers.get(command_name)
    if handler is None:
        logger.warning("Unknown command: %s", command_name)
        return f"ERROR: Unknown command '{command_name}'\r\n"

    try:
        return handler.execute(raw, container)
    except DatabaseError as exc:
        logger.error("Database error executing %s: %s", command_name, exc)
        return "ERROR: Internal storage error.\r\n"
    except Exception:
        logger.exception("Error executing command %s", command_name)
        return "ERROR: Internal error processing command.\r\n"


def handle_client(conn, addr, container: ServiceContainer):
    """Handles a single client connection; one command per line."""
    client_label = f"{addr[0]}:{addr[1]}" if isinstance(addr, tuple) else str(addr)
    logger.info("Connection accepted from %s", client_label)
    buffer_size = container.settings.server.buffer_size
    pending = b""

    try:
        with conn:
            while True:
                try:
                    data = conn.recv(buffer_size)
                except OSError:
                    logger.exception("Socket error with %s", client_label)
                    break

                if not data:
                    logger.info("Client %s disconnected", client_label)
                    break

                pending += data
                if len(pending) > buffer_size and b"\n" not in pending:
                    logger.warning("Oversized command from %s; dropping connection", client_label)
                    conn.sendall(b"ERROR: Command too long\r\n")
                    break

                while b"\n" in pending:
                    line, pending = pending.split(b"\n", 1)
                    try:
                        raw = line.decode("utf-8").strip()
                    except UnicodeDecodeError as exc:
                        logger.warning("Invalid UTF-8 from %s: %s", client_label, exc)
                        conn.sendall(b"ERROR: Invalid UTF-8 encoding\r\n")
                        continue
                    if not raw:
                        continue
                    logger.debug("Received command from %s: %s", client_label, raw.split()[0].lower())
                    conn.sendall(dispatch(raw, container).encode("utf-8"))
    except Exception:
        logger.exception("Unexpected error in handle_client for %s", client_label)
    finally:
        logger.info("Closing connection to %s", client_label)


def _start_background(container: ServiceContainer) -> None:
    """Start the reconciliation loop, with the local ledger producing heights, in one trio thread."""
    companions = []
    ledger_run = getattr(container.ledger, "run", None)
    if ledger_run is not None:
        companions.append(functools.partial(ledger_run, container.settings.ledger.slot_time))
    container.reconciler.start(companions=companions)


def _bind(server_socket: socket.socket, host: str, port: int, attempts: int = 10) -> int:
    for port_offset in range(attempts):
        candidate = port + port_offset
        try:
            server_socket.bind((host, candidate))
            return candidate
        except OSError:
            if port_offset == attempts - 1:
                raise
            logger.warning("Port %s:%s is busy, trying next port...", host, candidate)
    raise ConfigurationError("Failed to bind to any configured port.")


# --- Main Server Execution ---
def _run_server(container: ServiceContainer):
    """Runs the main server loop. The caller is responsible for exception handling."""
    settings = container.settings
    logger.info("Bootstrapping relay in '%s' environment", settings.env)
    logger.info("Relayer identity: %s", relay_logging.short_id(container.relayer.pubkey))
    logger.info("Sponsored asset: %s", relay_logging.short_id(settings.relayer.asset_id))

    logger.info("Starting reconciliation thread...")
    _start_background(container)

    server_socket = None
    try:
        server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        actual_port = _bind(server_socket, settings.server.host, settings.server.port)
        server_socket.listen()
        server_socket.settimeout(_ACCEPT_POLL_SECONDS)
        logger.info("Listening on %s:%s", settings.server.host, actual_port)
        logger.info("Press Ctrl+C to stop.")

        while not SERVER_STOP_FLAG.is_set():
            try:
                conn, addr = server_socket.accept()
            except socket.timeout:
                continue
            except OSError:
                if SERVER_STOP_FLAG.is_set():
                    logger.info("Socket closed during shutdown.")
                    break
                logger.exception("Error accepting connection")
                continue
            conn.settimeout(None)
            client_thread = threading.Thread(target=handle_client, args=(conn, addr, container), daemon=True)
            client_thread.start()
    finally:
        logger.info("Main server loop finished. Cleaning up...")
        if server_socket:
            try:
                server_socket.close()
            finally:
                logger.info("Server socket closed.")

        logger.info("Stopping reconciliation loop...")
        if container.reconciler.stop(timeout=settings.timeouts.shutdown_timeout):
            container.close()
            logger.info("Shutdown complete.")
        else:
            logger.warning("Leaving the store open for the in-flight reconciliation cycle.")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Fee-sponsoring relay server")
    parser.add_argument("--db-path", help="Override the SQLite database path")
    parser.add_argument("--port", type=int, help="Override the listening port")
    args = parser.parse_args(argv)

    try:
        overrides = {"server": {"port": args.port}} if args.port is not None else None
        settings = config.reload_settings(overrides=overrides)
        if args.db_path:
            config.set_database_path(args.db_path)
    except ConfigurationError as exc:
        logging.basicConfig()
        logger.critical("Configuration error during startup: %s", exc)
        sys.exit(1)

    relay_logging.configure(config.LOGGING)
    SERVER_STOP_FLAG.clear()
    try:
        container = ServiceContainer.build(settings=settings, overrides={"logger": logger})
    except (DatabaseError, DependencyError) as exc:
        logger.critical("Failed to wire services: %s", exc)
        sys.exit(1)

    try:
        _run_server(container)
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt received, shutting down server...")
        request_shutdown()
    except ConfigurationError as exc:
        logger.critical("Configuration error during startup: %s", exc)
        request_shutdown()
        sys.exit(1)
    except Exception:
        logger.exception("An unexpected server error occurred.")
        request_shutdown()
        sys.exit(1)


if __name__ == "__main__":
    main()
