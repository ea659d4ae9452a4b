"""
Identity provider boundary used by the inactive user archival job.

Deleting the external auth identity is optional and happens after the
archive copy is committed. Failures surface as ExternalVerificationError and
are recorded on the archive row; they never undo the archive.
"""

from abc import ABC, abstractmethod

from backend.src.utils.logging_config import get_logger


logger = get_logger("services")


class IdentityProvider(ABC):
    """Abstract external identity store."""

    name = "identity_provider"

    @abstractmethod
    async def delete_identity(self, user_id: str) -> None:
        """
        Delete the identity for user_id.

        Raises:
            ExternalVerificationError: If the provider rejects or cannot be reached
        """


class NoopIdentityProvider(IdentityProvider):
    """Provider used when no identity backend is configured; deletes nothing."""

    name = "noop"

    async def delete_identity(self, user_id: str) -> None:
        logger.info(
            "Identity deletion skipped, no provider configured",
            extra={"user_id": user_id}
        )
