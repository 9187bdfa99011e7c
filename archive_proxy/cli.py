# -*- mode: python; coding: utf-8 -*-
# Copyright 2019 The HERA Collaboration
# Licensed under the 2-clause BSD License.

"""Module for the archive-proxy command line script.

"""

import argparse
import sys
from pathlib import Path
from typing import Optional, Union

from . import __version__
from . import settings as proxy_config
from .exceptions import ArchiveProxyError
from .models import DownloadRequest, FileLocation, MetadataEntry, UploadRequest
from .proxies import proxy_from_settings
from .settings import load_settings

# define some common help strings
_endpoint_help = (
    "Globus endpoint of {}. If not given, the path is a local file (S3 proxies)."
)
_request_id_help = "The data transfer request ID returned by upload or download."


def die(fmt, *args):
    """Exit the script with the specifying error string.

    This function will exit the interpreter with code 1 and print the specified
    error message.

    Parameters
    ----------
    fmt : str
        String to be appended to the error message.
    args : str
        If `fmt` contains string substitution, args are unpacked for this purpose.

    Returns
    -------
    None

    """
    if not len(args):
        text = str(fmt)
    else:
        text = fmt % args
    print("error:", text, file=sys.stderr)
    sys.exit(1)


def sizeof_fmt(num, suffix="B"):
    """Format a size in human-readable values.

    Parameters
    ----------
    num : int
        Size in bytes.
    suffix : str
        Suffix to use.

    Returns
    -------
    output : str
        Human readable size.
    """
    for unit in ["", "k", "M", "G", "T", "P", "E", "Z"]:
        if abs(num) < 1024.0:
            return "{0:3.1f} {1:}{2:}".format(num, unit, suffix)
        num /= 1024.0
    return "{0:.1f} {1:}{2:}".format(num, "Y", suffix)


def parse_metadata(entries: Optional[list[str]]) -> list[MetadataEntry]:
    """
    Turn ATTRIBUTE=VALUE strings into metadata entries.
    """
    parsed = []

    for entry in entries or []:
        attribute, separator, value = entry.partition("=")

        if not separator or not attribute:
            die("metadata must be given as ATTRIBUTE=VALUE; got {}".format(entry))

        parsed.append(MetadataEntry(attribute=attribute, value=value))

    return parsed


def location_or_path(path: str, endpoint: Optional[str]) -> Union[FileLocation, Path]:
    if endpoint is None:
        return Path(path)

    return FileLocation(file_container_id=endpoint, file_id=path)


def get_proxy():
    """
    Build the configured proxy and log in with the configured account.
    """
    settings = proxy_config.proxy_settings

    try:
        proxy = proxy_from_settings(settings)
        session = proxy.authenticate(settings.account)
    except ArchiveProxyError as e:
        die("Could not connect to the {} backend: {}".format(settings.proxy_type, e))

    return proxy, session


def upload(args):
    """
    Upload a data object to the archive.
    """
    proxy, session = get_proxy()

    request = UploadRequest(
        path=args.path,
        source=location_or_path(args.source, args.source_endpoint),
        caller_object_id=args.caller_object_id,
    )

    with session:
        try:
            response = proxy.upload_data_object(
                session, request, metadata_entries=parse_metadata(args.meta)
            )
        except ArchiveProxyError as e:
            die("Upload failed: {}".format(e))

    print(response.model_dump_json(indent=2))

    return 0


def download(args):
    """
    Download a data object from the archive.
    """
    proxy, session = get_proxy()

    request = DownloadRequest(
        archive_location=FileLocation(
            file_container_id=args.container, file_id=args.file_id
        ),
        destination=location_or_path(args.destination, args.destination_endpoint),
    )

    with session:
        try:
            response = proxy.download_data_object(session, request)
        except ArchiveProxyError as e:
            die("Download failed: {}".format(e))

    print(response.model_dump_json(indent=2))

    return 0


def status(args):
    proxy, session = get_proxy()

    with session:
        try:
            print(proxy.get_data_transfer_status(session, args.request_id).value)
        except ArchiveProxyError as e:
            die("Could not get transfer status: {}".format(e))

    return 0


def report(args):
    proxy, session = get_proxy()

    with session:
        try:
            transfer_report = proxy.get_data_transfer_report(session, args.request_id)
        except ArchiveProxyError as e:
            die("Could not get transfer report: {}".format(e))

    print(transfer_report.model_dump_json(indent=2))

    return 0


def size(args):
    proxy, session = get_proxy()

    with session:
        nbytes = proxy.get_data_transfer_size(session, args.request_id)

    print("{} ({} bytes)".format(sizeof_fmt(nbytes), nbytes))

    return 0


def attributes(args):
    """
    Print whether a remote path exists, its type, and optionally its size.
    """
    proxy, session = get_proxy()

    with session:
        try:
            path_attributes = proxy.get_path_attributes(
                session,
                FileLocation(file_container_id=args.container, file_id=args.file_id),
                get_size=args.size,
            )
        except ArchiveProxyError as e:
            die("Could not get path attributes: {}".format(e))

    print(path_attributes.model_dump_json(indent=2))

    return 0


def generate_parser():
    """Make an archive-proxy ArgumentParser.

    The `ap` object returned contains subparsers for all archive-proxy sub-commands.

    Parameters
    ----------
    None

    Returns
    -------
    ap : ArgumentParser
    """
    ap = argparse.ArgumentParser(
        description="archive-proxy moves data objects to and from the configured archive"
    )
    ap.add_argument(
        "-V",
        "--version",
        action="version",
        version="archive-proxy {}".format(__version__),
        help="Show the archive-proxy version and exit.",
    )

    # add subparsers
    sub_parsers = ap.add_subparsers(metavar="command", dest="cmd")
    config_upload_subparser(sub_parsers)
    config_download_subparser(sub_parsers)
    config_status_subparser(sub_parsers)
    config_report_subparser(sub_parsers)
    config_size_subparser(sub_parsers)
    config_attributes_subparser(sub_parsers)

    return ap


def config_upload_subparser(sub_parsers):
    # function documentation
    doc = """Upload a data object to the archive. The PATH is the logical (catalog)
    path of the object; where it lands in the archive is decided by the
    configured placement.

    """
    hlp = "Upload a data object"

    # add sub parser
    sp = sub_parsers.add_parser("upload", description=doc, help=hlp)
    sp.add_argument(
        "--source-endpoint",
        dest="source_endpoint",
        default=None,
        help=_endpoint_help.format("the source"),
    )
    sp.add_argument(
        "--caller-object-id",
        dest="caller_object_id",
        default=None,
        help="Caller supplied object id, used by the caller_object_id placement.",
    )
    sp.add_argument(
        "--meta",
        dest="meta",
        action="append",
        metavar="ATTRIBUTE=VALUE",
        help="Metadata to attach to the object. May be given many times.",
    )
    sp.add_argument("source", metavar="SOURCE", help="The data to upload.")
    sp.add_argument("path", metavar="PATH", help="Logical path of the data object.")
    sp.set_defaults(func=upload)

    return


def config_download_subparser(sub_parsers):
    # function documentation
    doc = """Download a data object from the archive.

    """
    hlp = "Download a data object"

    # add sub parser
    sp = sub_parsers.add_parser("download", description=doc, help=hlp)
    sp.add_argument(
        "--destination-endpoint",
        dest="destination_endpoint",
        default=None,
        help=_endpoint_help.format("the destination"),
    )
    sp.add_argument(
        "container", metavar="CONTAINER", help="Archive endpoint or bucket."
    )
    sp.add_argument("file_id", metavar="FILE-ID", help="Archive path or key.")
    sp.add_argument(
        "destination", metavar="DESTINATION", help="Where to put the data."
    )
    sp.set_defaults(func=download)

    return


def config_status_subparser(sub_parsers):
    doc = """Get the status of a data transfer.

    """
    hlp = "Get the status of a data transfer"

    sp = sub_parsers.add_parser("status", description=doc, help=hlp)
    sp.add_argument("request_id", metavar="REQUEST-ID", help=_request_id_help)
    sp.set_defaults(func=status)

    return


def config_report_subparser(sub_parsers):
    doc = """Get the full report of a data transfer.

    """
    hlp = "Get the report of a data transfer"

    sp = sub_parsers.add_parser("report", description=doc, help=hlp)
    sp.add_argument("request_id", metavar="REQUEST-ID", help=_request_id_help)
    sp.set_defaults(func=report)

    return


def config_size_subparser(sub_parsers):
    doc = """Get the number of bytes moved by a data transfer.

    """
    hlp = "Get the size of a data transfer"

    sp = sub_parsers.add_parser("size", description=doc, help=hlp)
    sp.add_argument("request_id", metavar="REQUEST-ID", help=_request_id_help)
    sp.set_defaults(func=size)

    return


def config_attributes_subparser(sub_parsers):
    # function documentation
    doc = """Check whether a path exists on the backend, and whether it is a file
    or a directory. Computing the size walks the whole tree below the path and
    can be slow.

    """
    hlp = "Get the attributes of a remote path"

    # add sub parser
    sp = sub_parsers.add_parser("attributes", description=doc, help=hlp)
    sp.add_argument(
        "--size",
        dest="size",
        action="store_true",
        help="Also compute the size of the path.",
    )
    sp.add_argument(
        "container", metavar="CONTAINER", help="Endpoint or bucket."
    )
    sp.add_argument("file_id", metavar="FILE-ID", help="Path or key.")
    sp.set_defaults(func=attributes)

    return


def main():
    # make a parser and run the specified command
    parser = generate_parser()
    parsed_args = parser.parse_args()

    if getattr(parsed_args, "func", None) is None:
        parser.print_help()
        return 1

    settings = load_settings()
    settings.log_settings.setup_logs(settings.name)

    return parsed_args.func(parsed_args)


if __name__ == "__main__":
    sys.exit(main())
