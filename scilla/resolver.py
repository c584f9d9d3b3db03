"""Map menu selections plus prompted parameters to intents.

The command table below is the one place commands are enumerated; the
interactive shell builds its menus and prompts from it.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path

from loguru import logger
from solders.pubkey import Pubkey

from scilla.core.constants import LAMPORTS_PER_SOL
from scilla.core.errors import InvalidParameter, MissingParameter, UnknownCommand
from scilla.models import (
    Airdrop,
    AuthorizeVoter,
    AuthorizeWithdrawer,
    CreateStakeAccount,
    CreateVoteAccount,
    DeactivateStake,
    DelegateStake,
    DeployProgram,
    Intent,
    Memo,
    MergeStake,
    SplitStake,
    Transfer,
    WithdrawStake,
    WithdrawVote,
)

KeypairLoader = Callable[[Path], Pubkey]


class ParamKind(str, Enum):
    PUBKEY = "pubkey"
    KEYPAIR = "keypair"
    SOL = "sol"
    INTEGER = "integer"
    TEXT = "text"
    PATH = "path"


@dataclass(frozen=True, slots=True)
class ParamSpec:
    """One prompted parameter.

    ``default_to_session`` parameters fall back to the session pubkey when
    omitted. ``KEYPAIR`` parameters name a new account that must sign, given
    as a keypair file path (or the pubkey of an already loaded keypair).
    """

    name: str
    kind: ParamKind
    prompt: str
    required: bool = True
    default_to_session: bool = False
    default: str | None = None


@dataclass(frozen=True, slots=True)
class ResolvedParams:
    """Parsed parameter values handed to a command factory."""

    values: Mapping[str, object]
    session: Pubkey

    def __getitem__(self, name: str) -> object:
        return self.values[name]

    def get(self, name: str, default: object = None) -> object:
        return self.values.get(name, default)


@dataclass(frozen=True, slots=True)
class CommandSpec:
    path: tuple[str, str]
    description: str
    params: tuple[ParamSpec, ...]
    factory: Callable[[ResolvedParams], Intent]


def _pubkey(name: str, prompt: str, **kwargs: object) -> ParamSpec:
    return ParamSpec(name, ParamKind.PUBKEY, prompt, **kwargs)


def _authority(name: str, prompt: str) -> ParamSpec:
    return ParamSpec(name, ParamKind.PUBKEY, prompt, required=False, default_to_session=True)


def _keypair(name: str, prompt: str) -> ParamSpec:
    return ParamSpec(name, ParamKind.KEYPAIR, prompt)


def _sol(name: str, prompt: str, **kwargs: object) -> ParamSpec:
    return ParamSpec(name, ParamKind.SOL, prompt, **kwargs)


COMMANDS: tuple[CommandSpec, ...] = (
    # Account
    CommandSpec(
        path=("Account", "Transfer"),
        description="Send SOL to another wallet",
        params=(
            _pubkey("destination", "Recipient address"),
            _sol("amount", "Amount (SOL)"),
            _authority("source", "Source account (blank for session wallet)"),
        ),
        factory=lambda p: Transfer(
            source=p["source"], destination=p["destination"], lamports=p["amount"]
        ),
    ),
    CommandSpec(
        path=("Account", "Airdrop"),
        description="Request devnet/testnet SOL",
        params=(
            _sol("amount", "Amount (SOL)", required=False, default="1"),
            _authority("recipient", "Recipient (blank for session wallet)"),
        ),
        factory=lambda p: Airdrop(recipient=p["recipient"], lamports=p["amount"]),
    ),
    CommandSpec(
        path=("Account", "Memo"),
        description="Record a memo on chain",
        params=(
            ParamSpec("text", ParamKind.TEXT, "Memo text"),
            _authority("author", "Signer (blank for session wallet)"),
        ),
        factory=lambda p: Memo(author=p["author"], text=p["text"]),
    ),
    # Stake
    CommandSpec(
        path=("Stake", "Create"),
        description="Create and initialize a stake account",
        params=(
            _keypair("stake_account", "Stake account keypair file"),
            _sol("amount", "Amount to stake (SOL)"),
            _authority("staker", "Stake authority (blank for session wallet)"),
            _authority("withdrawer", "Withdraw authority (blank for session wallet)"),
            ParamSpec("lockup_epoch", ParamKind.INTEGER, "Lockup epoch", required=False, default="0"),
            ParamSpec(
                "lockup_unix_timestamp",
                ParamKind.INTEGER,
                "Lockup unix timestamp",
                required=False,
                default="0",
            ),
            _pubkey("custodian", "Lockup custodian (blank for none)", required=False),
        ),
        factory=lambda p: CreateStakeAccount(
            funder=p.session,
            stake_account=p["stake_account"],
            lamports=p["amount"],
            staker=p["staker"],
            withdrawer=p["withdrawer"],
            lockup_epoch=p["lockup_epoch"],
            lockup_unix_timestamp=p["lockup_unix_timestamp"],
            custodian=p.get("custodian"),
        ),
    ),
    CommandSpec(
        path=("Stake", "Delegate"),
        description="Delegate stake to a validator",
        params=(
            _pubkey("stake_account", "Stake account address"),
            _pubkey("vote_account", "Validator vote account"),
            _authority("stake_authority", "Stake authority (blank for session wallet)"),
        ),
        factory=lambda p: DelegateStake(
            stake_account=p["stake_account"],
            vote_account=p["vote_account"],
            stake_authority=p["stake_authority"],
        ),
    ),
    CommandSpec(
        path=("Stake", "Deactivate"),
        description="Begin cooling down delegated stake",
        params=(
            _pubkey("stake_account", "Stake account address"),
            _authority("stake_authority", "Stake authority (blank for session wallet)"),
        ),
        factory=lambda p: DeactivateStake(
            stake_account=p["stake_account"], stake_authority=p["stake_authority"]
        ),
    ),
    CommandSpec(
        path=("Stake", "Withdraw"),
        description="Withdraw inactive stake",
        params=(
            _pubkey("stake_account", "Stake account address"),
            _sol("amount", "Amount to withdraw (SOL)"),
            _authority("recipient", "Recipient (blank for session wallet)"),
            _authority("withdraw_authority", "Withdraw authority (blank for session wallet)"),
        ),
        factory=lambda p: WithdrawStake(
            stake_account=p["stake_account"],
            recipient=p["recipient"],
            lamports=p["amount"],
            withdraw_authority=p["withdraw_authority"],
        ),
    ),
    CommandSpec(
        path=("Stake", "Merge"),
        description="Merge one stake account into another",
        params=(
            _pubkey("destination", "Destination stake account"),
            _pubkey("source", "Source stake account (closed by the merge)"),
            _authority("stake_authority", "Stake authority (blank for session wallet)"),
        ),
        factory=lambda p: MergeStake(
            destination=p["destination"],
            source=p["source"],
            stake_authority=p["stake_authority"],
        ),
    ),
    CommandSpec(
        path=("Stake", "Split"),
        description="Split stake into a new account",
        params=(
            _pubkey("stake_account", "Stake account to split"),
            _keypair("split_account", "New split account keypair file"),
            _sol("amount", "Amount to move (SOL)"),
            _authority("stake_authority", "Stake authority (blank for session wallet)"),
        ),
        factory=lambda p: SplitStake(
            stake_account=p["stake_account"],
            split_account=p["split_account"],
            lamports=p["amount"],
            stake_authority=p["stake_authority"],
        ),
    ),
    # Vote
    CommandSpec(
        path=("Vote", "Create Vote Account"),
        description="Create a validator vote account",
        params=(
            _keypair("vote_account", "Vote account keypair file"),
            _keypair("identity", "Validator identity keypair file"),
            _sol("amount", "Funding amount (SOL)"),
            ParamSpec("commission", ParamKind.INTEGER, "Commission (%)", required=False, default="0"),
            _authority("authorized_voter", "Authorized voter (blank for session wallet)"),
            _authority("authorized_withdrawer", "Authorized withdrawer (blank for session wallet)"),
        ),
        factory=lambda p: CreateVoteAccount(
            funder=p.session,
            vote_account=p["vote_account"],
            identity=p["identity"],
            authorized_voter=p["authorized_voter"],
            authorized_withdrawer=p["authorized_withdrawer"],
            commission=p["commission"],
            lamports=p["amount"],
        ),
    ),
    CommandSpec(
        path=("Vote", "Authorize Voter"),
        description="Assign a new authorized voter",
        params=(
            _pubkey("vote_account", "Vote account address"),
            _pubkey("new_voter", "New authorized voter"),
            _authority("authority", "Current voter or withdrawer (blank for session wallet)"),
        ),
        factory=lambda p: AuthorizeVoter(
            vote_account=p["vote_account"], authority=p["authority"], new_voter=p["new_voter"]
        ),
    ),
    CommandSpec(
        path=("Vote", "Authorize Withdrawer"),
        description="Assign a new withdraw authority",
        params=(
            _pubkey("vote_account", "Vote account address"),
            _pubkey("new_withdrawer", "New withdraw authority"),
            _authority("authority", "Current withdrawer (blank for session wallet)"),
        ),
        factory=lambda p: AuthorizeWithdrawer(
            vote_account=p["vote_account"],
            authority=p["authority"],
            new_withdrawer=p["new_withdrawer"],
        ),
    ),
    CommandSpec(
        path=("Vote", "Withdraw from Vote"),
        description="Withdraw lamports from a vote account",
        params=(
            _pubkey("vote_account", "Vote account address"),
            _sol("amount", "Amount to withdraw (SOL)"),
            _authority("recipient", "Recipient (blank for session wallet)"),
            _authority("withdraw_authority", "Withdraw authority (blank for session wallet)"),
        ),
        factory=lambda p: WithdrawVote(
            vote_account=p["vote_account"],
            recipient=p["recipient"],
            lamports=p["amount"],
            withdraw_authority=p["withdraw_authority"],
        ),
    ),
    # Program
    CommandSpec(
        path=("Program", "Deploy"),
        description="Deploy a program binary through the upgradeable loader",
        params=(
            ParamSpec("program_file", ParamKind.PATH, "Program binary (.so)"),
            _keypair("program", "Program keypair file"),
            _authority("upgrade_authority", "Upgrade authority (blank for session wallet)"),
            ParamSpec(
                "max_data_len",
                ParamKind.INTEGER,
                "Max program size in bytes (0 for the binary size)",
                required=False,
                default="0",
            ),
        ),
        factory=lambda p: DeployProgram(
            payer=p.session,
            program=p["program"],
            program_path=p["program_file"],
            upgrade_authority=p["upgrade_authority"],
            max_data_len=p["max_data_len"],
        ),
    ),
)


def sol_to_lamports(value: str) -> int:
    """Convert a decimal SOL amount to lamports.

    Raises:
        ValueError: If ``value`` is not a number or has sub-lamport precision.
    """
    try:
        amount = Decimal(value.strip())
    except InvalidOperation as exc:
        raise ValueError(f"{value!r} is not a number") from exc
    if not amount.is_finite():
        raise ValueError(f"{value!r} is not a finite amount")
    lamports = amount * LAMPORTS_PER_SOL
    if lamports != lamports.to_integral_value():
        raise ValueError(f"{value!r} is finer than one lamport")
    return int(lamports)


def lamports_to_sol(lamports: int) -> str:
    return f"{Decimal(lamports) / LAMPORTS_PER_SOL:f}"


class CommandResolver:
    """Resolve ``(menu_path, params)`` into an intent.

    Resolution is pure apart from ``load_keypair``, which the session passes
    so new-account keypair files are registered with the signer.
    """

    def __init__(
        self,
        default_authority: Pubkey,
        load_keypair: KeypairLoader | None = None,
        commands: tuple[CommandSpec, ...] = COMMANDS,
    ) -> None:
        self.default_authority = default_authority
        self.load_keypair = load_keypair
        self._commands = {spec.path: spec for spec in commands}

    @property
    def commands(self) -> list[CommandSpec]:
        return list(self._commands.values())

    def groups(self) -> list[str]:
        seen: dict[str, None] = {}
        for group, _ in self._commands:
            seen.setdefault(group, None)
        return list(seen)

    def commands_in(self, group: str) -> list[CommandSpec]:
        return [spec for spec in self._commands.values() if spec.path[0] == group]

    def lookup(self, menu_path: tuple[str, ...]) -> CommandSpec:
        """Find a command by path, matching names case-insensitively.

        Raises:
            UnknownCommand: If no command has that path.
        """
        menu_path = tuple(menu_path)
        if len(menu_path) == 2:
            wanted = tuple(part.strip().lower() for part in menu_path)
            for path, spec in self._commands.items():
                if tuple(part.lower() for part in path) == wanted:
                    return spec
        raise UnknownCommand(menu_path)

    def resolve(self, menu_path: tuple[str, ...], params: Mapping[str, str]) -> Intent:
        """Build the intent for ``menu_path`` from raw string parameters.

        Raises:
            UnknownCommand: If ``menu_path`` names no command.
            MissingParameter: If a required parameter is absent or blank.
            InvalidParameter: If a value cannot be parsed.
        """
        spec = self.lookup(menu_path)
        values: dict[str, object] = {}
        for param in spec.params:
            raw = params.get(param.name)
            if raw is None or not str(raw).strip():
                raw = param.default
            if raw is None:
                if param.default_to_session:
                    values[param.name] = self.default_authority
                    continue
                if param.required:
                    raise MissingParameter(param.name)
                continue
            values[param.name] = self._parse(param, str(raw).strip())

        intent = spec.factory(ResolvedParams(values=values, session=self.default_authority))
        logger.debug("Resolved {} to {}", " > ".join(spec.path), intent.kind)
        return intent

    def _parse(self, param: ParamSpec, raw: str) -> object:
        if param.kind is ParamKind.PUBKEY:
            return parse_pubkey(param.name, raw)
        if param.kind is ParamKind.KEYPAIR:
            return self._parse_keypair(param.name, raw)
        if param.kind is ParamKind.SOL:
            try:
                return sol_to_lamports(raw)
            except ValueError as exc:
                raise InvalidParameter(param.name, str(exc)) from exc
        if param.kind is ParamKind.INTEGER:
            try:
                return int(raw)
            except ValueError as exc:
                raise InvalidParameter(param.name, f"{raw!r} is not an integer") from exc
        if param.kind is ParamKind.PATH:
            return Path(raw).expanduser()
        return raw

    def _parse_keypair(self, name: str, raw: str) -> Pubkey:
        try:
            return Pubkey.from_string(raw)
        except ValueError:
            if self.load_keypair is None:
                raise InvalidParameter(name, f"{raw!r} is not a public key") from None
        return self.load_keypair(Path(raw).expanduser())


def parse_pubkey(name: str, raw: str) -> Pubkey:
    try:
        return Pubkey.from_string(raw)
    except ValueError as exc:
        raise InvalidParameter(name, f"{raw!r} is not a valid public key") from exc
