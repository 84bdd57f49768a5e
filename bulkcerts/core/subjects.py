"""
Common name generation for bulk certificate subjects.

Three modes, each with an optional literal prefix taken from
CertificateInfo.common_name:

- static:    every certificate gets the prefix as-is
- increment: prefix + upper-case hex of (common_name_start + i), unpadded
- list:      prefix + the i-th entry of common_name_list, upper-cased

Chunks of one task share a template; the splitter rebases the template per
chunk (see chunk_cert_info) so generated names stay unique across the task.
"""
from __future__ import annotations

from dataclasses import replace

from bulkcerts.core.models import CertificateInfo, CommonNameGenerator
from bulkcerts.errors import ValidationError


def validate_cert_info(cert_info: CertificateInfo, quantity: int) -> None:
    """
    Check that the template can produce `quantity` common names.

    Raises:
        ValidationError: unknown generator, bad hex start, list too short
    """
    generator = cert_info.common_name_generator
    if generator not in CommonNameGenerator.ALL:
        raise ValidationError(
            f"Unknown common name generator '{generator}'. Expected one of: {', '.join(CommonNameGenerator.ALL)}"
        )

    if generator == CommonNameGenerator.INCREMENT:
        _parse_hex(cert_info.common_name_start)
    elif generator == CommonNameGenerator.LIST:
        names = cert_info.common_name_list or []
        if len(names) < quantity:
            raise ValidationError(
                f"commonNameList has {len(names)} entries, {quantity} certificates requested"
            )


def common_name_for(cert_info: CertificateInfo, index: int) -> str:
    """Common name of the index-th (0-based) certificate produced from this template."""
    prefix = cert_info.common_name or ""
    generator = cert_info.common_name_generator

    if generator == CommonNameGenerator.STATIC:
        return prefix
    if generator == CommonNameGenerator.INCREMENT:
        return prefix + _format_hex(_parse_hex(cert_info.common_name_start) + index)
    if generator == CommonNameGenerator.LIST:
        names = cert_info.common_name_list or []
        if index >= len(names):
            raise ValidationError(f"commonNameList has no entry for certificate {index}")
        return prefix + names[index].upper()

    raise ValidationError(f"Unknown common name generator '{generator}'")


def chunk_cert_info(cert_info: CertificateInfo, offset: int, quantity: int) -> CertificateInfo:
    """
    Template for a chunk whose first certificate is the offset-th of the task.

    Increment mode advances the start, list mode keeps only the chunk's slice.
    """
    generator = cert_info.common_name_generator
    if generator == CommonNameGenerator.INCREMENT:
        return replace(cert_info, common_name_start=_format_hex(_parse_hex(cert_info.common_name_start) + offset))
    if generator == CommonNameGenerator.LIST:
        names = cert_info.common_name_list or []
        return replace(cert_info, common_name_list=list(names[offset:offset + quantity]))
    return cert_info


def _parse_hex(value) -> int:
    if not value:
        raise ValidationError("commonNameStart is required with the increment generator")
    try:
        return int(value, 16)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"commonNameStart must be hexadecimal, got {value!r}") from e


def _format_hex(value: int) -> str:
    # leading zeros of the start are not carried over
    return format(value, "X")
