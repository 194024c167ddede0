"""Record processing: filtering, categorisation, transformation and syndication."""

from .categories import CategoryNormalizer
from .filters import FilterService
from .syndication import SyndicationService
from .transformer import TransformationService

__all__ = ["CategoryNormalizer", "FilterService", "SyndicationService", "TransformationService"]
