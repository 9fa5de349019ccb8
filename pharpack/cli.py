from __future__ import annotations

import os
import sys
import argparse
import json as _json

from typing import List, Optional

from pharpack.analyzer import format_report, summarize
from pharpack.constants import COMPRESSION_NONE, COMPRESSION_GZ, COMPRESSION_BZ2, SIDECAR_NAME
from pharpack.errors import PharError
from pharpack.reader import ArchiveReader
from pharpack.workflow import ExtractRequest, RepackRequest, extract_archive, repack_directory


_COMPRESSION_CHOICES = {
    "none": COMPRESSION_NONE,
    "gz": COMPRESSION_GZ,
    "bz2": COMPRESSION_BZ2,
}


def cmd_extract(source: str, target: str, *, quiet: bool = False) -> bool:
    """Extract a PHAR into ``target`` and record its characteristics in the sidecar.

    Args:
        source: Path to the archive to read.
        target: Directory to extract into (created when missing).
        quiet: Only print the final status line.
    """
    result = extract_archive(ExtractRequest(source=source, target_dir=target))
    if not quiet:
        print("Analyzing original PHAR:")
        print(format_report(result.summary, size=result.size))
        print(f"Sidecar: {os.path.join(target, SIDECAR_NAME)}")
    print(f"Successfully extracted PHAR to: {target} ({result.files} files)")
    return True


def cmd_repack(
    source: str,
    target: str,
    *,
    signature: Optional[str] = None,
    compression: Optional[str] = None,
    quiet: bool = False,
) -> bool:
    """Create a PHAR from a directory, reusing the sidecar left by ``extract``.

    Args:
        source: Directory to pack.
        target: Archive path to write; replaced atomically when it exists.
        signature: Signature algorithm name, "none" for unsigned; default comes
            from the sidecar, else SHA-1.
        compression: Force one of "none"/"gz"/"bz2" instead of the policy choice.
        quiet: Only print the final status line.
    """
    kind = _COMPRESSION_CHOICES[compression] if compression else None
    result = repack_directory(
        RepackRequest(source_dir=source, target=target, signature=signature, compression=kind)
    )
    if not quiet:
        if not result.used_sidecar:
            print(f"No usable {SIDECAR_NAME} found; using default policy")
        print(f"Compression applied: {result.compression}")
        print(f"Files processed: {result.files}")
        print("New PHAR analysis:")
        print(format_report(result.summary, size=result.size))
    print(f"Repacking complete: {target}")
    return True


def cmd_analyze(archive: str, *, as_json: bool = False) -> bool:
    """Show file count, sizes, compression histogram and signature status.

    Args:
        archive: Path to the archive.
        as_json: Emit a JSON document instead of text.
    """
    with ArchiveReader(archive) as r:
        summary = summarize(r.archive)
        verified = r.verify()
        size = r.size
    if as_json:
        doc = summary.as_dict()
        doc["size"] = size
        doc["signature_valid"] = verified
        print(_json.dumps(doc))
    else:
        print(f"Archive: {archive}")
        print(format_report(summary, size=size))
        state = {True: "OK", False: "MISMATCH", None: "not checked"}[verified]
        print(f"Signature check: {state}")
    return verified is not False


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="pharpack",
        description="Extract and repack PHAR archives",
        epilog=(
            f"extract writes {SIDECAR_NAME} into the target directory; repack reads it back "
            "to restore metadata, stub, compression and signature algorithm."
        ),
    )
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_extract = sub.add_parser("extract", help="Extract PHAR file to directory")
    ap_extract.add_argument("source", help="Source PHAR file")
    ap_extract.add_argument("target", help="Target directory")
    ap_extract.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_repack = sub.add_parser("repack", help="Create PHAR file from directory")
    ap_repack.add_argument("source", help="Source directory")
    ap_repack.add_argument("target", help="Target PHAR file")
    ap_repack.add_argument(
        "--signature",
        choices=["md5", "sha1", "sha256", "sha512", "none"],
        help="Signature algorithm (default: the original's, else sha1)",
    )
    ap_repack.add_argument(
        "--compression",
        choices=sorted(_COMPRESSION_CHOICES),
        help="Compress every entry this way instead of following the recorded profile",
    )
    ap_repack.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_analyze = sub.add_parser("analyze", help="Analyze a PHAR archive")
    ap_analyze.add_argument("archive", help="Path to the PHAR file")
    ap_analyze.add_argument("--json", action="store_true", help="Emit JSON")

    args = ap.parse_args(argv)
    try:
        if args.cmd == "extract":
            cmd_extract(args.source, args.target, quiet=args.quiet)
        elif args.cmd == "repack":
            cmd_repack(
                args.source,
                args.target,
                signature=args.signature,
                compression=args.compression,
                quiet=args.quiet,
            )
        elif args.cmd == "analyze":
            ok = cmd_analyze(args.archive, as_json=args.json)
            sys.exit(0 if ok else 1)
        else:
            raise RuntimeError("Unknown command")
    except (PharError, OSError, ValueError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
