"""
Interactive action tokens.

Buttons attached to notifications carry a token of the shape
``debt_<verb>_<id>``. For accept/reject, delete and edit verbs the id is the
linked debt id shared by both copies; for snooze it is the owner's debt id.
"""

import logging
from typing import NamedTuple, Optional

from debtbot.core.constants import ACTION_PREFIX, ActionVerb
from debtbot.schemas.debt import OperationResult

logger = logging.getLogger(__name__)

UNKNOWN_ACTION = "Unknown action."


class DebtAction(NamedTuple):
    verb: ActionVerb
    target_id: str


def build_action_token(verb: ActionVerb, target_id: str) -> str:
    return f"{ACTION_PREFIX}_{verb.value}_{target_id}"


def parse_action_token(token: str) -> Optional[DebtAction]:
    """Split on the first two underscores. Returns None for anything malformed."""
    if not token:
        return None
    parts = token.split("_", 2)
    if len(parts) != 3 or parts[0] != ACTION_PREFIX or not parts[2]:
        return None
    try:
        verb = ActionVerb(parts[1])
    except ValueError:
        return None
    return DebtAction(verb, parts[2])


class ActionRouter:
    """Turns a pressed button into the matching engine call."""

    def __init__(self, debt_service):
        self.debt_service = debt_service

    async def handle(self, user_id: str, token: str) -> OperationResult:
        action = parse_action_token(token)
        if action is None:
            logger.info("Ignoring unknown action token %r from user %s", token, user_id)
            return OperationResult.fail(UNKNOWN_ACTION)

        service = self.debt_service
        verb, target_id = action
        if verb in (ActionVerb.ACCEPT, ActionVerb.REJECT):
            return await service.respond_to_debt(user_id, target_id, verb is ActionVerb.ACCEPT)
        if verb in (ActionVerb.CONFIRM_DELETE, ActionVerb.REJECT_DELETE):
            return await service.respond_to_deletion(user_id, target_id, verb is ActionVerb.CONFIRM_DELETE)
        if verb in (ActionVerb.ACCEPT_EDIT, ActionVerb.REJECT_EDIT):
            return await service.respond_to_edit(user_id, target_id, verb is ActionVerb.ACCEPT_EDIT)
        return await service.snooze_reminder(user_id, target_id)
