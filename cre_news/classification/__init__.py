"""Article relevance, categorization and editorial copy."""

from .taxonomy import TAG_CATEGORIES, VALID_COUNTIES, COUNTY_NAMES, OTHER_COUNTY, NATIONAL_TAGS
from .categorizer import ArticleCategorizer, validate_counties
from .editorial import EditorialWriter, DEFAULT_NEWSLETTER_TITLE

__all__ = [
    "TAG_CATEGORIES", "VALID_COUNTIES", "COUNTY_NAMES", "OTHER_COUNTY", "NATIONAL_TAGS",
    "ArticleCategorizer", "validate_counties",
    "EditorialWriter", "DEFAULT_NEWSLETTER_TITLE",
]
