import argparse
import logging
import signal
import sys

from . import __version__
from .config import Config, normalize_base_dir, write_default_settings
from .console import Console
from .credentials import CredentialStore
from .errors import CannotRecover, LoginAborted, StoreWriteError
from .logs import setup_logging


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="cubed-sync", description="Sync a local folder to a dashboard server")
    parser.add_argument("--init", action="store_true", help="Write a default settings file and exit")
    parser.add_argument("--root", default=".", help="Project directory holding the settings file (default: cwd)")
    parser.add_argument("--foldersupport", "--fs", dest="folder_support", action="store_true",
                        help="Mirror sub-directories instead of flattening them")
    parser.add_argument("--name", "-n", help="Display name used in status messages")
    parser.add_argument("--logerrors", "--logerr", dest="log_errors", action="store_true",
                        help="Print errors the server reports for uploaded files")
    parser.add_argument("--basedir", "--dir", dest="base_dir", help="Remote directory files are uploaded to")
    parser.add_argument("--server", help="Server to select (case-insensitive) instead of asking")
    parser.add_argument("--once", action="store_true", help="Upload every file once then exit")
    parser.add_argument("--forget", action="store_true", help="Delete saved login details and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Also print debug logging to stderr")
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    if args.version:
        print(f"cubed-sync {__version__}")
        return 0

    console = Console()
    try:
        config = Config.load(args.root)
    except ValueError as e:
        console.error(str(e))
        return 1

    if args.init:
        if write_default_settings(config.settings_path):
            console.success(f"Created {config.settings_path}")
        else:
            console.info(f"{config.settings_path} already exists; left unchanged")
        return 0

    if args.folder_support:
        config.folder_support = True
    if args.name:
        config.username = args.name
    if args.log_errors:
        config.log_errors = True
    if args.base_dir is not None:
        config.base_dir = normalize_base_dir(args.base_dir)
    if args.server:
        config.server = args.server

    store = CredentialStore(config.credentials_file, config.use_keyring, config.keyring_service)
    if args.forget:
        try:
            removed = store.clear()
        except StoreWriteError as e:
            console.error(str(e))
            return 1
        console.info("Saved login details removed" if removed else "No saved login details")
        return 0

    setup_logging(config, verbose=args.verbose)
    logging.info(f"cubed-sync {__version__} starting in {config.root_dir}")

    # Lazy imports keep --version/--init free of the HTTP and watcher stacks
    from .login import LoginOrchestrator  # noqa: PLC0415
    from .prompts import Prompter  # noqa: PLC0415
    from .session import AuthSession  # noqa: PLC0415
    from .sync_manager import SyncManager  # noqa: PLC0415
    from .transport import DashboardTransport  # noqa: PLC0415

    transport = DashboardTransport(config.base_url, config.request_timeout, config.cookie_name)
    session = AuthSession(transport, base_dir=config.base_dir, cookie_name=config.cookie_name,
                          probe_interval=config.probe_interval)
    try:
        LoginOrchestrator(config, store, session, Prompter(), console).run()
    except LoginAborted as e:
        logging.error(f"Login aborted: {e}")
        return 1
    except CannotRecover as e:
        console.error(f"{e}. Exiting system.")
        return 1
    except (KeyboardInterrupt, EOFError):
        console.error("Cancelled")
        return 130

    manager = SyncManager(config, session, transport, console)

    def handle_sigterm(signum, frame):  # pragma: no cover - signal path
        manager.stop_event.set()
    signal.signal(signal.SIGTERM, handle_sigterm)
    signal.signal(signal.SIGINT, handle_sigterm)

    try:
        if args.once:
            try:
                pushed = manager.sync_all()
            finally:
                manager.shutdown()
            console.success(f"Uploaded {pushed} file{'s' if pushed != 1 else ''}")
            return 0
        manager.start()
    except CannotRecover:
        return 1
    return 0


if __name__ == '__main__':
    raise SystemExit(main(sys.argv[1:]))
