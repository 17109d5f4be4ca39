"""Command line entry point for working with a bucket as a filesystem."""
import argparse
import logging
import sys
from typing import Callable, Optional, Sequence, TextIO

from .errors import S3FileSystemError, TransferCancelledError
from .filesystem import S3FileSystem
from .keychain import KeychainStore
from .settings import SettingsStorage

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pys3a", description="Browse an S3 bucket as a filesystem.")
    parser.add_argument("--config", help="path of the JSON settings file")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    parser.add_argument("uri", help="filesystem URI, e.g. s3a://bucket")
    commands = parser.add_subparsers(dest="command", required=True)

    ls = commands.add_parser("ls", help="list a directory")
    ls.add_argument("path", nargs="?", default="/")

    stat = commands.add_parser("stat", help="show the status of a path")
    stat.add_argument("path")

    mkdir = commands.add_parser("mkdir", help="create a directory and its parents")
    mkdir.add_argument("path")

    rm = commands.add_parser("rm", help="delete a file or directory")
    rm.add_argument("-r", "--recursive", action="store_true")
    rm.add_argument("path")

    mv = commands.add_parser("mv", help="rename a file or directory")
    mv.add_argument("src")
    mv.add_argument("dst")

    put = commands.add_parser("put", help="upload a local file")
    put.add_argument("-f", "--force", action="store_true", help="overwrite an existing file")
    put.add_argument("local")
    put.add_argument("path")

    cat = commands.add_parser("cat", help="print a file to standard output")
    cat.add_argument("path")

    secret = commands.add_parser("secret", help="store an access key or secret key in the keychain")
    secret.add_argument("name", choices=("access_key", "secret_key"))
    secret.add_argument("value")
    return parser


def _format_status(status) -> str:
    kind = "d" if status.is_directory else "-"
    modified = status.modification_time.isoformat() if status.modification_time else ""
    return f"{kind} {status.length:>12} {modified:<25} {status.path}"


def run(
    args: argparse.Namespace,
    out: TextIO,
    filesystem_factory: Callable[..., S3FileSystem] = S3FileSystem,
) -> int:
    settings = SettingsStorage(args.config).load()
    if args.command == "secret":
        KeychainStore(settings.secret_store_service).set_secret(args.name, args.value)
        return 0

    with filesystem_factory(args.uri, settings) as fs:
        if args.command == "ls":
            for status in fs.list_status(args.path):
                print(_format_status(status), file=out)
        elif args.command == "stat":
            print(_format_status(fs.get_file_status(args.path)), file=out)
        elif args.command == "mkdir":
            fs.mkdirs(args.path)
        elif args.command == "rm":
            if not fs.delete(args.path, args.recursive):
                print(f"rm: cannot remove {args.path}", file=sys.stderr)
                return 1
        elif args.command == "mv":
            if not fs.rename(args.src, args.dst):
                print(f"mv: cannot rename {args.src} to {args.dst}", file=sys.stderr)
                return 1
        elif args.command == "put":
            fs.copy_from_local_file(args.local, args.path, overwrite=args.force)
        elif args.command == "cat":
            with fs.open(args.path) as stream:
                data = stream.read()
            buffer = getattr(out, "buffer", None)
            if buffer is not None:
                buffer.write(data)
            else:
                out.write(data.decode("utf-8", errors="replace"))
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return run(args, sys.stdout)
    except (S3FileSystemError, TransferCancelledError, ValueError) as exc:
        LOGGER.debug("Command %s failed", args.command, exc_info=True)
        print(f"{args.command}: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
