"""
classifier.py
-------------

Suggest categories for vendors the user has not categorized yet.

The model learns from the vendors that already carry a category: each
vendor name is turned into TF-IDF features over character n-grams (vendor
strings on statements are short and often truncated, so whole words are a
poor signal) and a multinomial logistic regression picks the category.
The fitted pipeline is pickled so it can be reloaded between runs.

Accepted suggestions go through ``repository.set_vendor_category`` and
therefore propagate to the vendor's uncategorized transactions exactly like
a manual choice would.
"""

from __future__ import annotations

import logging
import pickle
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence, Tuple

from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.linear_model import LogisticRegression
from sklearn.pipeline import Pipeline
from sqlalchemy.orm import Session

import repository
from database import Category, Vendor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VendorSuggestion:
    vendor_id: int
    vendor_name: str
    category_id: int
    category_name: str
    confidence: float


def load_training_data(db: Session) -> List[Tuple[str, str]]:
    """(vendor name, category name) pairs for every categorized vendor."""
    rows = (
        db.query(Vendor.name, Vendor.user_defined_name, Category.name)
        .join(Category, Category.id == Vendor.category_id)
        .all()
    )
    pairs = []
    for name, user_defined_name, category in rows:
        pairs.append((name, category))
        if user_defined_name:
            pairs.append((user_defined_name, category))
    return pairs


def build_model() -> Pipeline:
    """Create the classification pipeline."""
    vectorizer = TfidfVectorizer(
        strip_accents="unicode",
        lowercase=True,
        analyzer="char_wb",
        ngram_range=(2, 4),
        max_features=5000,
    )

    classifier = LogisticRegression(max_iter=1000)

    return Pipeline([
        ("vectorizer", vectorizer),
        ("classifier", classifier),
    ])


def train(pairs: Sequence[Tuple[str, str]]) -> Pipeline:
    categories = {category for _, category in pairs}
    if len(categories) < 2:
        raise ValueError("Categorize vendors in at least two categories before training")

    model = build_model()
    model.fit([name for name, _ in pairs], [category for _, category in pairs])
    logger.info("Model trained on %d vendors across %d categories", len(pairs), len(categories))
    return model


def save_model(model: Pipeline, output_path: str | Path) -> None:
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "wb") as f:
        pickle.dump(model, f)
    logger.info("Model saved to %s", output_path)


def load_model(model_path: str | Path) -> Pipeline:
    with open(model_path, "rb") as f:
        return pickle.load(f)


def train_and_save(db: Session, output_path: str | Path) -> Pipeline:
    model = train(load_training_data(db))
    save_model(model, output_path)
    return model


def suggest_vendor_categories(db: Session, model: Pipeline, top_n: int | None = None) -> List[VendorSuggestion]:
    """Rank a category guess for each uncategorized vendor, most confident first."""
    vendors = repository.list_vendors(db, uncategorized_only=True)
    if not vendors:
        return []

    categories = {c.name: c.id for c in repository.list_categories(db)}
    names = [v.display_name for v in vendors]
    probabilities = model.predict_proba(names)
    labels = list(model.classes_)

    suggestions = []
    for vendor, probs in zip(vendors, probabilities):
        best = int(probs.argmax())
        category_name = labels[best]
        # The category may have been deleted since the model was trained
        if category_name not in categories:
            continue
        suggestions.append(VendorSuggestion(
            vendor_id=vendor.id,
            vendor_name=vendor.display_name,
            category_id=categories[category_name],
            category_name=category_name,
            confidence=float(probs[best]),
        ))

    suggestions.sort(key=lambda s: s.confidence, reverse=True)
    return suggestions[:top_n] if top_n else suggestions


def apply_suggestions(db: Session, suggestions: Sequence[VendorSuggestion], min_confidence: float = 0.0) -> int:
    """Accept suggestions at or above ``min_confidence``; returns vendors updated."""
    applied = 0
    for suggestion in suggestions:
        if suggestion.confidence < min_confidence:
            continue
        repository.set_vendor_category(db, suggestion.vendor_id, suggestion.category_id)
        applied += 1
    return applied
