"""Services layer: configuration bridge and recommendation engine."""

from .config_bridge import ConfigurationBridge
from .recommendation_service import RecommendationEngine

__all__ = ['ConfigurationBridge', 'RecommendationEngine']
