"""
ImageAnalyzer Backend: Abstract Image Consumer
===============================================

What:  The contract of whatever analyses a stored batch (an AI vision model
       in production, a stub in tests).
How:   Concrete consumers subclass ImageConsumer and implement consume().
       They read the files through StoredFile.absolute_path only for the
       duration of the call; the batch is deleted right after it returns.
Who:   Called by IngestionService.process(); injected through create_app().
"""

from abc import ABC, abstractmethod
from typing import List

from imageanalyzer.schemas.upload import StoredFile


class ImageConsumer(ABC):
    """
    Abstract interface for downstream analysis of an uploaded batch.

    Contract:
        - consume() receives every accepted file of one request, in upload order
        - the files exist for the whole call and are gone afterwards
        - consume() must not delete or move the files itself
        - any exception it raises is translated by the ErrorTranslator
    """

    @abstractmethod
    async def consume(self, files: List[StoredFile], prompt: str) -> str:
        """
        Analyse a stored batch.

        Args:
            files: The stored files of the request.
            prompt: Custom prompt from the request ("" when none was given).

        Returns:
            The analysis text returned to the client.
        """
        ...

    async def health_check(self) -> bool:
        """True if the consumer can currently accept work."""
        return True
