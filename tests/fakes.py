"""In-process fakes for the image tools and stock firmware.

FakeMagiskBoot stores image entries in a JSON container so unpack/repack
can be checked entry by entry. FakeAvbTool records its calls, answers
``info_image`` with real avbtool-style text and appends deterministic
footers after a marker.
"""

import hashlib
import json
from pathlib import Path

from kernel_repack.tools.avbtool import parse_info_image
from kernel_repack.tools.runner import ToolResult

FOOTER_MARKER = b"\n#AVB-FOOTER#"

INFO_IMAGE_TEXT = """\
Minimum libavb version:   1.0
Header Block:             256 bytes
Authentication Block:     576 bytes
Auxiliary Block:          1600 bytes
Public key (sha1):        2597c218aae470a130f61162feaae70afd97f011
Algorithm:                SHA256_RSA4096
Rollback Index:           7
Flags:                    0
Rollback Index Location:  0
Release String:           'avbtool 1.1.0'
Descriptors:
    Chain Partition descriptor:
      Partition Name:          vbmeta_system
      Rollback Index Location: 1
"""

STOCK_BOOT = {"kernel": "STOCK-KERNEL", "ramdisk.cpio": "STOCK-RAMDISK"}
STOCK_VENDOR_BOOT = {
    "header": "name=SRPOLD00A001\ncmdline=console=ttyMSM0 androidboot.hardware=qcom\n",
    "dtb": "STOCK-DTB",
    "vendor_ramdisk.cpio": "STOCK-VENDOR-RAMDISK",
}


def strip_footer(data: bytes) -> bytes:
    return data.split(FOOTER_MARKER, 1)[0]


def read_footer(path: Path) -> dict:
    _, _, footer = path.read_bytes().partition(FOOTER_MARKER)
    return json.loads(footer)


def write_container(path: Path, entries: dict, footer: bool = True) -> Path:
    """Write a fake image container, optionally with a stock footer."""
    data = json.dumps(entries, sort_keys=True).encode()
    if footer:
        data += FOOTER_MARKER + b'{"stock": true}'
    path.write_bytes(data)
    return path


def read_container(path: Path) -> dict:
    return json.loads(strip_footer(path.read_bytes()))


def make_firmware(firmware_root: Path, variant: str, skip: tuple = ()) -> Path:
    """Create a stock firmware directory for ``variant``."""
    fw = firmware_root / variant
    fw.mkdir(parents=True, exist_ok=True)
    if "boot.img" not in skip:
        write_container(fw / "boot.img", STOCK_BOOT)
    if "vendor_boot.img" not in skip:
        write_container(fw / "vendor_boot.img", STOCK_VENDOR_BOOT)
    if "dtbo.img" not in skip:
        (fw / "dtbo.img").write_bytes(b"STOCK-DTBO" * 8)
    if "vbmeta.img" not in skip:
        (fw / "vbmeta.img").write_bytes(b"STOCK-VBMETA" * 16)
    return fw


class FakeMagiskBoot:
    """In-process stand-in for magiskboot."""

    def __init__(self):
        self.calls: list[tuple] = []

    def unpack(self, image: Path, cwd: Path, header_only: bool = False):
        self.calls.append(("unpack", image.name, header_only))
        for name, content in read_container(image).items():
            if name == "header" and not header_only:
                continue
            (cwd / name).write_text(content)
        return ToolResult(command="unpack", exit_code=0)

    def repack(self, original: Path, new_image: Path, cwd: Path):
        self.calls.append(("repack", original.name, new_image.name))
        entries = {}
        for name, content in read_container(original).items():
            entry = cwd / name
            entries[name] = entry.read_text() if entry.is_file() else content
        write_container(new_image, entries, footer=False)
        return ToolResult(command="repack", exit_code=0)


class FakeAvbTool:
    """In-process stand-in for avbtool."""

    def __init__(self, info_text: str = INFO_IMAGE_TEXT):
        self.info_text = info_text
        self.calls: list[tuple] = []

    def info_image(self, image: Path):
        self.calls.append(("info_image", image.name))
        return parse_info_image(self.info_text)

    def erase_footer(self, image: Path):
        self.calls.append(("erase_footer", image.name))
        image.write_bytes(strip_footer(image.read_bytes()))
        return ToolResult(command="erase_footer", exit_code=0)

    def add_hash_footer(
        self, image, partition_name, partition_size, algorithm, key, salt=None
    ):
        self.calls.append(("add_hash_footer", image.name, partition_name))
        content = strip_footer(image.read_bytes())
        digest = hashlib.sha256((salt or "").encode() + content).hexdigest()
        footer = {
            "partition_name": partition_name,
            "partition_size": partition_size,
            "algorithm": algorithm,
            "salt": salt,
            "digest": digest,
            "key_sha256": hashlib.sha256(key.read_bytes()).hexdigest() if key else None,
        }
        image.write_bytes(
            content + FOOTER_MARKER + json.dumps(footer, sort_keys=True).encode()
        )
        return ToolResult(command="add_hash_footer", exit_code=0)

    def make_vbmeta_image(
        self, output, algorithm, key, rollback_index, flags, include_descriptors_from
    ):
        self.calls.append(("make_vbmeta_image", output.name))
        vbmeta = {
            "algorithm": algorithm,
            "rollback_index": rollback_index,
            "flags": flags,
            "descriptors": [read_footer(p) for p in include_descriptors_from],
        }
        output.write_text(json.dumps(vbmeta, sort_keys=True))
        return ToolResult(command="make_vbmeta_image", exit_code=0)

    def extract_public_key(self, key: Path, output: Path):
        self.calls.append(("extract_public_key", output.name))
        output.write_bytes(hashlib.sha256(key.read_bytes()).digest())
        return ToolResult(command="extract_public_key", exit_code=0)
