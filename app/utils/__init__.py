from app.utils.date_utils import as_date, days_between
from app.utils.text import normalize_description, description_similarity

__all__ = ["as_date", "days_between", "normalize_description", "description_similarity"]
