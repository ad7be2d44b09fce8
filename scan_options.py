#!/usr/bin/env python3
"""
Start Option Schema and Validator

Declares every option accepted by the scan "start" command and validates a raw
set of user supplied values against it. Validation runs in two passes: a
type/presence pass that parses tokens and fills in defaults, followed by a
dependency pass that evaluates the declarative rule table in schema order.

The first violation wins, so the user always gets one actionable error.

Author: Scan Launcher Contributors
License: MIT
"""

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple, Type, Union

logger = logging.getLogger(__name__)

# PnP Management Shell application, used when no application id is given
DEFAULT_APPLICATION_ID = uuid.UUID("31359c7f-bd7e-475c-86db-fdb8c937548e")
DEFAULT_TEST_NUMBER_OF_SITES = 10
LIST_DELIMITER = ","
CERTIFICATE_DELIMITER = "|"


class Mode(Enum):
    TEST = "Test"
    SYNTEX = "Syntex"


class Microsoft365Environment(Enum):
    PRODUCTION = "Production"
    PRE_PRODUCTION = "PreProduction"
    CHINA = "China"
    GERMANY = "Germany"
    US_GOVERNMENT = "USGovernment"
    US_GOVERNMENT_HIGH = "USGovernmentHigh"
    US_GOVERNMENT_DOD = "USGovernmentDoD"
    CUSTOM = "Custom"


class AuthenticationMode(Enum):
    INTERACTIVE = "Interactive"
    APPLICATION = "Application"
    DEVICE = "Device"


class ValueType(Enum):
    ENUM = "enum"
    STRING = "string"
    INTEGER = "integer"
    PATH = "path"
    LIST = "list"
    GUID = "guid"


def cli_flag(name: str) -> str:
    """Command line spelling of an option name (``sitesList`` -> ``--siteslist``)"""
    return f"--{name.lower()}"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class OptionValidationError(Exception):
    """Base class for every rejected start option combination."""

    def __init__(self, option: str, reason: str):
        self.option = option
        self.reason = reason
        super().__init__(reason)


class MissingRequiredOption(OptionValidationError):
    def __init__(self, option: str):
        super().__init__(option, f"the {cli_flag(option)} option is required")


class UnknownOption(OptionValidationError):
    def __init__(self, option: str, reason: Optional[str] = None):
        super().__init__(option, reason or f"{cli_flag(option)} is not a recognized option")


class InvalidOptionValue(OptionValidationError):
    def __init__(self, option: str, detail: str):
        super().__init__(option, f"invalid {cli_flag(option)} value: {detail}")


class ConflictingOptions(OptionValidationError):
    def __init__(self, option: str, other: str):
        self.other = other
        super().__init__(
            option,
            f"the {cli_flag(option)} option is mutually exclusive with the {cli_flag(other)} option",
        )


class InvalidOptionForMode(OptionValidationError):
    def __init__(self, option: str, mode_option: str, expected: Enum):
        self.mode_option = mode_option
        self.expected = expected
        super().__init__(
            option,
            f"{cli_flag(option)} can only be used with {cli_flag(mode_option)} {expected.value.lower()}",
        )


class IncompletePair(OptionValidationError):
    def __init__(self, option: str, companion: str):
        self.companion = companion
        super().__init__(
            option,
            f"using {cli_flag(option)} also requires using {cli_flag(companion)}",
        )


class MalformedCertificateReference(OptionValidationError):
    def __init__(self, option: str, value: str):
        super().__init__(
            option,
            f"invalid {cli_flag(option)} value '{value}', expected StoreName|StoreLocation|Thumbprint "
            f"(e.g. My|LocalMachine|3FG496B468BE3828E2359A8A6F092FB701C8CDB1)",
        )


# ---------------------------------------------------------------------------
# Dependency rules
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MutuallyExclusiveWith:
    other: str


@dataclass(frozen=True)
class RequiresValueOf:
    other: str
    expected: Enum


@dataclass(frozen=True)
class PairedWith:
    other: str


@dataclass(frozen=True)
class ClampedDefault:
    minimum_accepted: int
    fallback: int


@dataclass(frozen=True)
class CertificateReference:
    """StoreName|StoreLocation|Thumbprint, all three segments non-empty"""


@dataclass(frozen=True)
class ExistingFile:
    """Path value must name an existing file"""


DependencyRule = Union[MutuallyExclusiveWith, RequiresValueOf, PairedWith, ClampedDefault, CertificateReference, ExistingFile]


@dataclass(frozen=True)
class OptionSpec:
    """One recognized start option."""

    name: str
    value_type: ValueType
    required: bool = False
    default: Any = None
    rules: Tuple[DependencyRule, ...] = ()
    enum_type: Optional[Type[Enum]] = None
    debug_only: bool = False
    help: str = ""

    @property
    def flag(self) -> str:
        return cli_flag(self.name)


@dataclass(frozen=True)
class ResolvedParameters:
    """Fully validated, defaulted and rule-corrected start options.

    Instances come out of :func:`validate_options`, so every dependency rule
    already holds and nothing downstream re-checks them.
    """

    mode: Mode = Mode.TEST
    tenant: Optional[str] = None
    environment: Microsoft365Environment = Microsoft365Environment.PRODUCTION
    sites_list: Optional[Tuple[str, ...]] = None
    sites_file: Optional[Path] = None
    auth_mode: AuthenticationMode = AuthenticationMode.INTERACTIVE
    application_id: uuid.UUID = DEFAULT_APPLICATION_ID
    cert_path: Optional[str] = None
    cert_pfx_file: Optional[Path] = None
    cert_pfx_password: Optional[str] = field(default=None, repr=False)
    test_number_of_sites: int = DEFAULT_TEST_NUMBER_OF_SITES
    supplied: FrozenSet[str] = field(default=frozenset(), compare=False)


# Option name -> ResolvedParameters attribute
FIELD_NAMES: Dict[str, str] = {
    "mode": "mode",
    "tenant": "tenant",
    "environment": "environment",
    "sitesList": "sites_list",
    "sitesFile": "sites_file",
    "authMode": "auth_mode",
    "applicationId": "application_id",
    "certPath": "cert_path",
    "certPfxFile": "cert_pfx_file",
    "certPfxPassword": "cert_pfx_password",
    "testNumberOfSites": "test_number_of_sites",
}


def build_start_schema() -> Tuple[OptionSpec, ...]:
    """Build the ordered option table for the start command.

    Declaration order is evaluation order for the dependency pass.
    """
    return (
        # Scan scope
        OptionSpec("mode", ValueType.ENUM, required=True, default=Mode.TEST,
                   enum_type=Mode, help="Scanner mode"),
        OptionSpec("tenant", ValueType.STRING,
                   help="Name of the tenant that will be scanned (e.g. contoso.sharepoint.com)"),
        OptionSpec("environment", ValueType.ENUM, default=Microsoft365Environment.PRODUCTION,
                   enum_type=Microsoft365Environment, help="The cloud environment you're scanning"),
        OptionSpec("sitesList", ValueType.LIST, rules=(MutuallyExclusiveWith("sitesFile"),),
                   help="List with site collections to scan"),
        OptionSpec("sitesFile", ValueType.PATH, rules=(ExistingFile(),),
                   help="File containing a list of site collections to scan"),
        # Scan authentication
        OptionSpec("authMode", ValueType.ENUM, required=True, default=AuthenticationMode.INTERACTIVE,
                   enum_type=AuthenticationMode, help="Authentication mode used for the scan"),
        OptionSpec("applicationId", ValueType.GUID, required=True, default=DEFAULT_APPLICATION_ID,
                   help="Azure AD application id to use for authenticating the scan"),
        OptionSpec("certPath", ValueType.STRING,
                   rules=(RequiresValueOf("authMode", AuthenticationMode.APPLICATION), CertificateReference()),
                   help="Path to stored certificate in the form of StoreName|StoreLocation|Thumbprint. "
                        "E.g. My|LocalMachine|3FG496B468BE3828E2359A8A6F092FB701C8CDB1"),
        OptionSpec("certPfxFile", ValueType.PATH,
                   rules=(RequiresValueOf("authMode", AuthenticationMode.APPLICATION), ExistingFile()),
                   help="Path to certificate PFX file"),
        OptionSpec("certPfxPassword", ValueType.STRING,
                   rules=(RequiresValueOf("authMode", AuthenticationMode.APPLICATION), PairedWith("certPfxFile")),
                   help="Password for the certificate PFX file"),
        # Scan component specific options
        OptionSpec("testNumberOfSites", ValueType.INTEGER, default=DEFAULT_TEST_NUMBER_OF_SITES,
                   rules=(RequiresValueOf("mode", Mode.TEST),
                          ClampedDefault(0, DEFAULT_TEST_NUMBER_OF_SITES)),
                   debug_only=True, help="Number of site collections to emulate for dummy scanning"),
    )


START_SCHEMA = build_start_schema()


# ---------------------------------------------------------------------------
# Type/presence pass
# ---------------------------------------------------------------------------

def parse_enum(enum_type: Type[Enum], token: str) -> Enum:
    """Match a token against enum member values, ignoring case"""
    wanted = token.strip().lower()
    for member in enum_type:
        if member.value.lower() == wanted:
            return member
    choices = ", ".join(member.value for member in enum_type)
    raise ValueError(f"'{token}' is not one of {choices}")


def _parse_value(spec: OptionSpec, tokens: Sequence[str]) -> Any:
    if spec.value_type == ValueType.LIST:
        items = [item.strip() for token in tokens for item in token.split(LIST_DELIMITER)]
        return tuple(item for item in items if item)

    if len(tokens) != 1:
        raise InvalidOptionValue(spec.name, f"expected exactly one value, got {len(tokens)}")
    token = tokens[0]

    try:
        if spec.value_type == ValueType.ENUM:
            return parse_enum(spec.enum_type, token)
        if spec.value_type == ValueType.INTEGER:
            return int(token)
        if spec.value_type == ValueType.GUID:
            return uuid.UUID(token)
    except ValueError as e:
        raise InvalidOptionValue(spec.name, str(e)) from e

    if spec.value_type == ValueType.PATH:
        return Path(token).expanduser().resolve()

    return token


def _parse_supplied(
    raw: Mapping[str, Optional[Sequence[str]]],
    schema: Sequence[OptionSpec],
    allow_debug_options: bool,
) -> Tuple[Dict[str, Any], FrozenSet[str]]:
    by_name = {spec.name: spec for spec in schema}
    for name, tokens in raw.items():
        if name not in by_name and tokens is not None:
            raise UnknownOption(name)

    values: Dict[str, Any] = {}
    supplied = set()
    for spec in schema:
        tokens = raw.get(spec.name)
        if tokens is None:
            if spec.required and spec.default is None:
                raise MissingRequiredOption(spec.name)
            values[spec.name] = spec.default
            continue

        if spec.debug_only and not allow_debug_options:
            raise UnknownOption(spec.name, f"{spec.flag} is only available when test options are enabled")

        if isinstance(tokens, str):
            tokens = [tokens]
        values[spec.name] = _parse_value(spec, tokens)
        supplied.add(spec.name)

    return values, frozenset(supplied)


# ---------------------------------------------------------------------------
# Dependency pass
# ---------------------------------------------------------------------------

def _apply_rule(spec: OptionSpec, rule: DependencyRule, values: Dict[str, Any], supplied: FrozenSet[str]):
    present = spec.name in supplied

    if isinstance(rule, MutuallyExclusiveWith):
        if present and rule.other in supplied:
            raise ConflictingOptions(spec.name, rule.other)

    elif isinstance(rule, RequiresValueOf):
        if present and values.get(rule.other) != rule.expected:
            raise InvalidOptionForMode(spec.name, rule.other, rule.expected)

    elif isinstance(rule, PairedWith):
        other_present = rule.other in supplied
        if present and not other_present:
            raise IncompletePair(spec.name, rule.other)
        if other_present and not present:
            raise IncompletePair(rule.other, spec.name)

    elif isinstance(rule, ClampedDefault):
        value = values.get(spec.name)
        if value is not None and value <= rule.minimum_accepted:
            logger.info(f"{spec.flag} value {value} replaced by {rule.fallback}")
            values[spec.name] = rule.fallback

    elif isinstance(rule, CertificateReference):
        value = values.get(spec.name)
        if present and not is_certificate_reference(value):
            raise MalformedCertificateReference(spec.name, value)

    elif isinstance(rule, ExistingFile):
        value = values.get(spec.name)
        if present and not value.is_file():
            raise InvalidOptionValue(spec.name, f"file '{value}' does not exist")

    else:
        raise TypeError(f"Unsupported dependency rule: {rule!r}")


def _check_not_empty(spec: OptionSpec, value: Any):
    # Runs after the option's own rules so conflicts and mode errors are reported first
    if spec.value_type == ValueType.LIST and not value:
        raise InvalidOptionValue(spec.name, "expected at least one value")
    if spec.value_type == ValueType.STRING and value == "":
        raise InvalidOptionValue(spec.name, "expected a non-empty value")


def is_certificate_reference(value: Optional[str]) -> bool:
    """True for StoreName|StoreLocation|Thumbprint with three non-empty segments"""
    if not value:
        return False
    segments = value.split(CERTIFICATE_DELIMITER)
    return len(segments) == 3 and all(segments)


def validate_options(
    raw: Mapping[str, Optional[Sequence[str]]],
    schema: Optional[Sequence[OptionSpec]] = None,
    allow_debug_options: bool = False,
) -> ResolvedParameters:
    """
    Validate raw start options and resolve them into typed parameters.

    Args:
        raw: option name -> token list; absent or None means not supplied
        schema: option table, defaults to the start command schema
        allow_debug_options: accept ``debug_only`` options such as testNumberOfSites

    Returns:
        ResolvedParameters with every dependency rule satisfied

    Raises:
        OptionValidationError: the first violation found, in schema order
    """
    schema = START_SCHEMA if schema is None else schema
    values, supplied = _parse_supplied(raw, schema, allow_debug_options)

    for spec in schema:
        for rule in spec.rules:
            _apply_rule(spec, rule, values, supplied)
        if spec.name in supplied:
            _check_not_empty(spec, values[spec.name])

    resolved = ResolvedParameters(
        supplied=supplied,
        **{FIELD_NAMES[name]: value for name, value in values.items() if name in FIELD_NAMES},
    )
    logger.debug(f"Resolved start options (supplied: {', '.join(sorted(supplied)) or 'none'})")
    return resolved


def describe_schema(schema: Optional[Sequence[OptionSpec]] = None) -> List[Dict[str, Any]]:
    """Flat description of the option table, used for help output"""
    schema = START_SCHEMA if schema is None else schema
    rows = []
    for spec in schema:
        default = spec.default.value if isinstance(spec.default, Enum) else spec.default
        rows.append({
            "flag": spec.flag,
            "type": spec.value_type.value,
            "required": spec.required,
            "default": "" if default is None else str(default),
            "debug_only": spec.debug_only,
            "help": spec.help,
        })
    return rows
