import json
import logging
import os
from dataclasses import replace

from targetplatform import TargetPlatform, BitfieldAbi, Endianness
from typegraph.types import PrimitiveKind

logger = logging.getLogger(__name__)

_PRESETS = {
    "linux-x86_64": TargetPlatform.linux_x86_64,
    "linux-aarch64": TargetPlatform.linux_aarch64,
    "linux-i386": TargetPlatform.linux_i386,
    "windows-x64": TargetPlatform.windows_x64,
}

_OVERRIDABLE_KEYS = [
    "pointer_width",
    "endianness",
    "max_alignment",
    "default_pack",
    "bitfield_abi",
    "char_is_signed",
    "primitive_widths",
    "primitive_alignments",
    "unsupported_primitives",
]


def preset(name: str) -> TargetPlatform:
    factory = _PRESETS.get(name)
    if factory is None:
        raise ValueError(f"Unknown target preset {name}, expected one of {', '.join(_PRESETS)}")
    return factory()


def _kind_map(raw: dict) -> dict[PrimitiveKind, int]:
    return {PrimitiveKind(name): int(value) for name, value in raw.items()}


def target_from_dict(raw: dict) -> TargetPlatform:
    """Builds a target from a preset name plus overrides.

    Keys other than ``base`` and ``name`` are the :class:`TargetPlatform`
    field names; primitive kinds are spelled the C way (``"long double"``).
    """
    raw = dict(raw)
    raw.setdefault("base", "linux-x86_64")
    target = preset(raw.pop("base"))

    unknown = [key for key in raw if key not in _OVERRIDABLE_KEYS and key != "name"]
    if unknown:
        raise ValueError(f"Unknown target config keys: {', '.join(sorted(unknown))}")

    changes = {}
    if "name" in raw:
        changes["name"] = raw["name"]
    if "pointer_width" in raw:
        if raw["pointer_width"] not in (16, 32, 64):
            raise ValueError(f"Unsupported pointer width {raw['pointer_width']}")
        changes["pointer_width"] = raw["pointer_width"]
    if "endianness" in raw:
        changes["endianness"] = Endianness(raw["endianness"])
    if "max_alignment" in raw:
        changes["max_alignment"] = int(raw["max_alignment"])
    if "default_pack" in raw:
        pack = raw["default_pack"]
        if pack is not None and not target.is_valid_pack(pack):
            raise ValueError(f"Invalid default pack value {pack}")
        changes["default_pack"] = pack
    if "bitfield_abi" in raw:
        changes["bitfield_abi"] = BitfieldAbi(raw["bitfield_abi"])
    if "char_is_signed" in raw:
        changes["char_is_signed"] = bool(raw["char_is_signed"])
    if "primitive_widths" in raw:
        changes["primitive_widths"] = {**target.primitive_widths, **_kind_map(raw["primitive_widths"])}
    if "primitive_alignments" in raw:
        changes["primitive_alignments"] = {**target.primitive_alignments, **_kind_map(raw["primitive_alignments"])}
    if "unsupported_primitives" in raw:
        changes["unsupported_primitives"] = frozenset(PrimitiveKind(name) for name in raw["unsupported_primitives"])

    return replace(target, **changes)


def load_target(path: str) -> TargetPlatform:
    """Loads a target platform description from a JSON file."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"Target config file not found: {path}")

    with open(path, "r", encoding="utf-8") as file:
        raw = json.load(file)

    if not isinstance(raw, dict):
        raise ValueError(f"Target config {path} must contain a JSON object")

    target = target_from_dict(raw)
    logger.debug("Loaded target %s from %s", target.name, path)
    return target
