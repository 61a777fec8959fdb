"""
Accounts, personas and categories for threadloop.

One non-stealth identity (``business``) learns its category weights from
engagement. Any number of stealth identities (``a1``, ``a2``, ...) carry a
persona from config.yaml that replaces the base weights outright and adds
its own text blocklist.

Credentials come from .env:

    THREADS_ACCESS_TOKEN / THREADS_USER_ID          business account
    THREADS_ACCESS_TOKEN_A1 / THREADS_USER_ID_A1    stealth account "a1"
"""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from threadloop.history import BUSINESS_ACCOUNT

load_dotenv()


@dataclass
class Category:
    """A weighted topic bucket the selector draws from."""
    id: str
    label: str
    weight: float

    def with_weight(self, weight: float) -> "Category":
        return Category(id=self.id, label=self.label, weight=weight)


@dataclass
class Persona:
    """Fixed profile that overrides learned weights for a stealth account."""
    category_weights: dict[str, float] = field(default_factory=dict)
    length_distribution: dict[str, float] = field(default_factory=dict)
    blocklist: list[str] = field(default_factory=list)
    voice: str = ""


@dataclass
class Account:
    name: str
    stealth: bool = False
    persona: Persona | None = None

    @property
    def env_suffix(self) -> str:
        if self.name == BUSINESS_ACCOUNT:
            return ""
        return f"_{self.name.upper()}"

    @property
    def token_var(self) -> str:
        return f"THREADS_ACCESS_TOKEN{self.env_suffix}"

    @property
    def user_id_var(self) -> str:
        return f"THREADS_USER_ID{self.env_suffix}"

    def credentials(self) -> tuple[str, str]:
        """Return ``(access_token, user_id)`` or raise if either is unset."""
        token = os.getenv(self.token_var)
        user_id = os.getenv(self.user_id_var)
        missing = [
            name for name, value in
            ((self.token_var, token), (self.user_id_var, user_id))
            if not value
        ]
        if missing:
            raise ValueError(f"Missing Threads credentials in .env: {', '.join(missing)}")
        return token, user_id


def load_categories(config: dict) -> list[Category]:
    """Base categories, in config order."""
    return [
        Category(
            id=c["id"],
            label=c.get("label", c["id"]),
            weight=float(c.get("weight", 0)),
        )
        for c in config.get("categories", [])
    ]


def load_accounts(config: dict) -> dict[str, Account]:
    """All configured accounts keyed by name; the business account is always present."""
    accounts = {BUSINESS_ACCOUNT: Account(name=BUSINESS_ACCOUNT)}
    for name, spec in (config.get("personas") or {}).items():
        spec = spec or {}
        accounts[name] = Account(
            name=name,
            stealth=True,
            persona=Persona(
                category_weights={
                    k: float(v) for k, v in (spec.get("category_weights") or {}).items()
                },
                length_distribution={
                    k: float(v) for k, v in (spec.get("length_distribution") or {}).items()
                },
                blocklist=list(spec.get("blocklist") or []),
                voice=spec.get("voice", ""),
            ),
        )
    return accounts


def get_account(config: dict, name: str | None) -> Account:
    accounts = load_accounts(config)
    name = name or BUSINESS_ACCOUNT
    if name not in accounts:
        raise ValueError(
            f"Unknown account '{name}'. Configured: {', '.join(sorted(accounts))}"
        )
    return accounts[name]


def stealth_accounts(config: dict) -> list[Account]:
    return [a for a in load_accounts(config).values() if a.stealth]
