# universe_terminal/authorization.py
#
# Yes/no authorization for commands that the safety engine flags as requiring
# explicit user approval. Anything other than an explicit "yes" within the
# timeout counts as a denial.

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import FormattedText

logger = logging.getLogger(__name__)

DEFAULT_AUTHORIZATION_TIMEOUT = 30.0


class Authorizer(Protocol):
    async def request(self, title: str, subtitle: str) -> bool: ...


@dataclass(frozen=True)
class AuthorizationOutcome:
    approved: bool
    reason: str = ""


async def request_authorization(authorizer: Optional[Authorizer], title: str, subtitle: str,
                                timeout: float = DEFAULT_AUTHORIZATION_TIMEOUT) -> AuthorizationOutcome:
    """Awaits the authorizer with a timeout and folds every failure mode into a denial."""
    if authorizer is None:
        logger.warning(f"No authorizer configured; denying '{subtitle}'.")
        return AuthorizationOutcome(False, "no authorization provider available")

    try:
        approved = await asyncio.wait_for(authorizer.request(title, subtitle), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Authorization timed out after {timeout}s for '{subtitle}'.")
        return AuthorizationOutcome(False, f"no response within {timeout:g} seconds")
    except (EOFError, KeyboardInterrupt):
        logger.info(f"Authorization prompt cancelled by user for '{subtitle}'.")
        return AuthorizationOutcome(False, "prompt cancelled")
    except Exception as e:
        logger.error(f"Authorizer raised while handling '{subtitle}': {e}", exc_info=True)
        return AuthorizationOutcome(False, f"authorizer error: {e}")

    if approved:
        logger.info(f"Authorization granted for '{subtitle}'.")
        return AuthorizationOutcome(True)
    logger.info(f"Authorization denied by user for '{subtitle}'.")
    return AuthorizationOutcome(False, "denied by user")


class ConsoleAuthorizer:
    """Asks for confirmation on the terminal with a prompt_toolkit prompt."""

    YES_ANSWERS = ("y", "yes")

    def __init__(self, session: Optional[PromptSession] = None):
        self.session = session or PromptSession()

    async def request(self, title: str, subtitle: str) -> bool:
        message = FormattedText([
            ("class:security-critical", f"\n{title}\n"),
            ("class:warning", f"  {subtitle}\n"),
            ("class:prompt", "Run this command anyway? [y/N] "),
        ])
        answer = await self.session.prompt_async(message)
        return answer.strip().lower() in self.YES_ANSWERS
