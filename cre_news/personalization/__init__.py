"""Interest-based filtering, interest refinement and search."""

from .interest_filter import InterestFilter
from .refiner import InterestRefiner, ConversationTurn
from .search import ArticleSearch

__all__ = ["InterestFilter", "InterestRefiner", "ConversationTurn", "ArticleSearch"]
