"""
tickets.py - Banker tickets, ownership proofs and the ticket authority

=== TICKET MODEL ===

A Ticket is a non-fungible token naming one position. Whoever holds it owns
the position:
    - close() consumes the ticket itself (it is burned)
    - every other operation only needs a Proof created from the ticket,
      so the holder never surrenders custody

A Proof asserts "caller controls ticket X". The engine checks that the proof
is of its own ticket resource and that the authority issued it before
trusting the ID.

=== AUTHENTICITY ===

mint() gives every ticket a random secret token, kept by the authority and
carried by the ticket and by each proof the ticket creates. A Ticket or Proof
built by hand with a live ID but without that token is rejected by
authenticate(), so only the holder of the minted ticket can act on it.

=== AUTHORITY ===

TicketAuthority mints, burns and updates ticket data. Each of these calls
requires the AdminBadge the authority was created for. The badge is held
privately by the LendingEngine and never handed out.
"""

from __future__ import annotations
from dataclasses import dataclass, field
import uuid
from typing import Callable, Dict, Set, Tuple, TypeVar

from .core import (
    Position, PositionId, Resource,
    NotFound, Unauthorized, WrongResource,
    badge_resource,
)


T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Proof:
    """
    Proof of ownership of one ticket; never transfers custody.

    Attributes:
        resource: Ticket resource the proof was created from
        ticket_id: ID of the proven ticket
        token: Secret of the ticket the proof was created from
    """
    resource: Resource
    ticket_id: PositionId
    token: str = field(default="", repr=False, compare=False)

    def resource_matches(self, expected: Resource) -> bool:
        return self.resource.address == expected.address


@dataclass(frozen=True, slots=True)
class Ticket:
    """
    Non-fungible banker ticket.

    Attributes:
        resource: Ticket resource (one per pool)
        ticket_id: ID of the position the ticket represents
        token: Secret assigned by the minting authority
    """
    resource: Resource
    ticket_id: PositionId
    token: str = field(default="", repr=False, compare=False)

    def create_proof(self) -> Proof:
        return Proof(resource=self.resource, ticket_id=self.ticket_id, token=self.token)

    def __repr__(self) -> str:
        return f"Ticket({self.ticket_id} of {self.resource.name})"


@dataclass(frozen=True, slots=True)
class AdminBadge:
    """Administrative capability required by TicketAuthority."""
    resource: Resource

    def authorize(self, action: Callable[[AdminBadge], T]) -> T:
        """Run a privileged action with this badge present."""
        return action(self)


def create_admin_badge(name: str) -> AdminBadge:
    return AdminBadge(resource=badge_resource(f"{name} auth badge"))


class TicketAuthority:
    """
    Issuer of one non-fungible ticket resource.

    Ticket data mirrors the position record so that a holder can read it
    from the ticket; the engine keeps it in sync via update_data().
    """

    def __init__(self, resource: Resource, admin_resource: Resource):
        self.resource = resource
        self._admin_resource = admin_resource
        self._data: Dict[PositionId, Position] = {}
        self._tokens: Dict[PositionId, str] = {}
        self._burned: Set[PositionId] = set()

    def _require_badge(self, badge: AdminBadge) -> None:
        if badge.resource.address != self._admin_resource.address:
            raise Unauthorized(f"Badge {badge.resource.name} cannot manage {self.resource.name}")

    def mint(self, badge: AdminBadge, ticket_id: PositionId, data: Position) -> Ticket:
        """
        Issue a new ticket.

        Raises:
            Unauthorized: if the badge is not this authority's admin badge
            ValueError: if the ID is live or was burned before
        """
        self._require_badge(badge)
        if ticket_id in self._data or ticket_id in self._burned:
            raise ValueError(f"Ticket {ticket_id} already issued")
        token = uuid.uuid4().hex
        self._data[ticket_id] = data
        self._tokens[ticket_id] = token
        return Ticket(resource=self.resource, ticket_id=ticket_id, token=token)

    def burn(self, badge: AdminBadge, ticket: Ticket) -> None:
        """
        Destroy a ticket.

        Raises:
            Unauthorized: if the badge is not this authority's admin badge,
                or the ticket does not carry the token it was minted with
            WrongResource: if the ticket is of another resource
            NotFound: if the ticket was already burned
        """
        self._require_badge(badge)
        if ticket.resource.address != self.resource.address:
            raise WrongResource(f"Ticket {ticket.ticket_id} is not a {self.resource.name}")
        if ticket.ticket_id not in self._data:
            raise NotFound(f"Ticket {ticket.ticket_id} not found")
        if not self.authenticate(ticket.ticket_id, ticket.token):
            raise Unauthorized(f"Ticket {ticket.ticket_id} was not issued by {self.resource.name}")
        del self._data[ticket.ticket_id]
        del self._tokens[ticket.ticket_id]
        self._burned.add(ticket.ticket_id)

    def update_data(self, badge: AdminBadge, ticket_id: PositionId, data: Position) -> None:
        """
        Raises:
            Unauthorized: if the badge is not this authority's admin badge
            NotFound: if the ticket does not exist
        """
        self._require_badge(badge)
        if ticket_id not in self._data:
            raise NotFound(f"Ticket {ticket_id} not found")
        self._data[ticket_id] = data

    def get_data(self, ticket_id: PositionId) -> Position:
        try:
            return self._data[ticket_id]
        except KeyError:
            raise NotFound(f"Ticket {ticket_id} not found") from None

    def is_live(self, ticket_id: PositionId) -> bool:
        return ticket_id in self._data

    def is_burned(self, ticket_id: PositionId) -> bool:
        return ticket_id in self._burned

    def authenticate(self, ticket_id: PositionId, token: str) -> bool:
        """True if `token` is the secret minted with the live ticket `ticket_id`."""
        expected = self._tokens.get(ticket_id)
        return expected is not None and expected == token

    def snapshot(self) -> Tuple[Dict[PositionId, Position], Dict[PositionId, str], Set[PositionId]]:
        return dict(self._data), dict(self._tokens), set(self._burned)

    def restore(self, saved: Tuple[Dict[PositionId, Position], Dict[PositionId, str], Set[PositionId]]) -> None:
        data, tokens, burned = saved
        self._data = dict(data)
        self._tokens = dict(tokens)
        self._burned = set(burned)

    def __len__(self) -> int:
        return len(self._data)
