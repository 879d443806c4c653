import argparse
import os
import sys

from dotenv import find_dotenv, load_dotenv

from fileserver.config import DEFAULT_LISTEN, VERSION, ServerConfig
from fileserver.logs import configure_logging
from fileserver.server import BindError, EventLoopServer


def yes_no(value: str) -> bool:
    value = value.lower()
    if value not in ("yes", "no"):
        raise argparse.ArgumentTypeError(f"expected yes or no, got {value!r}")
    return value == "yes"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=f"fileserver v{VERSION}: serve a directory over HTTP")
    parser.add_argument("-H", dest="hexdump", type=yes_no, default=False, metavar="yes|no", help="enable traffic hexdump, default: no")
    parser.add_argument("-d", dest="root", type=str, default=".", metavar="DIR", help="directory to serve, default: '.'")
    parser.add_argument("-l", dest="listen", type=str, default=DEFAULT_LISTEN, metavar="ADDR", help=f"listening address, default: '{DEFAULT_LISTEN}'")
    parser.add_argument("-v", dest="debug_level", type=int, default=2, choices=range(5), metavar="LEVEL", help="debug level, from 0 to 4, default: 2")
    # Defaults may come from a .env file so passwords stay off the command line.
    parser.add_argument("-u", dest="username", type=str, default=os.getenv("HTTP_USER"), metavar="USER", help="basic auth username, default: $HTTP_USER")
    parser.add_argument("-p", dest="password", type=str, default=os.getenv("HTTP_PASS"), metavar="PASSWORD", help="basic auth password, default: $HTTP_PASS")
    return parser


def parse_config(argv=None) -> ServerConfig:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not os.path.isdir(args.root):
        parser.error(f"-d: {args.root!r} is not a directory")
    return ServerConfig(
        root=args.root,
        listen=args.listen,
        hexdump=args.hexdump,
        debug_level=args.debug_level,
        username=args.username or None,
        password=args.password or None,
    )


def main(argv=None) -> int:
    load_dotenv(find_dotenv(usecwd=True))
    config = parse_config(argv)
    configure_logging(config.debug_level)

    server = EventLoopServer(config)
    try:
        server.run()
    except BindError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
