# recommender/engine.py
"""Prediction entry point: picks a scoring strategy per request and ranks.

The engine holds no per-request state. The model is passed in on every call
so a caller can swap it between requests without coordinating with us.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

from recommender.config import AlgorithmParams
from recommender.constraints import ConstraintResolver
from recommender.event_store import EventStore
from recommender.model import ECommModel
from recommender.schemas import ItemScore, PredictedResult, Query
from recommender.strategies import (
    Strategy,
    predict_default,
    predict_known_user,
    predict_similar,
)


class PredictionEngine:
    def __init__(
        self,
        params: AlgorithmParams,
        store: EventStore,
        logger: Optional[logging.Logger] = None,
    ):
        self.params = params
        self.logger = logger or logging.getLogger(__name__)
        self.constraints = ConstraintResolver(store, params, logger=self.logger)

    def predict(self, model: ECommModel, query: Query) -> PredictedResult:
        return self.explain(model, query)[1]

    def explain(self, model: ECommModel, query: Query) -> Tuple[Strategy, PredictedResult]:
        """Like ``predict`` but also reports which strategy produced the result."""
        items = model.item_index

        white_list = items.indices(query.white_list) if query.white_list is not None else None
        black_list = items.indices(self.constraints.resolve_exclusions(query))

        workers = self.params.workers
        user_feature = model.user_feature(query.user)

        if user_feature is not None:
            strategy = Strategy.KNOWN_USER
            top_scores = predict_known_user(
                user_feature, model.item_matrix, query, white_list, black_list, workers=workers
            )
        else:
            # e.g. a user created after the model was trained
            self.logger.info(f"No userFeature found for user {query.user}.")
            recent = self.constraints.recent_items(query)
            recent_features = []
            for i in items.indices(recent):
                pm = model.product_models.get(i)
                if pm is not None and pm.features is not None:
                    recent_features.append(pm.features)

            if recent_features:
                strategy = Strategy.SIMILAR_TO_RECENT
                top_scores = predict_similar(
                    recent_features, model.item_matrix, query, white_list, black_list,
                    workers=workers, aggregation=self.params.similar_aggregation,
                )
            else:
                self.logger.info(f"No features vector for recent items {sorted(recent)}.")
                strategy = Strategy.DEFAULT_POPULARITY
                top_scores = predict_default(
                    model.item_matrix, query, white_list, black_list, workers=workers
                )

        result = PredictedResult(
            item_scores=[ItemScore(item=items.to_id(i), score=s) for i, s in top_scores]
        )
        self.logger.info(
            f"Predicted {len(result.item_scores)} items for user {query.user} via {strategy.value}"
        )
        return strategy, result
