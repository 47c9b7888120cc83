"""
Cost estimator — per-source price table and batch cost estimates.

Prices live in cost_config.yaml (in-memory cache, hardcoded fallback if the
file is missing). Estimates are pure: no I/O beyond the one-time YAML load.
An unknown source key is a programmer error and raises UnknownSourceKey.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

import yaml

logger = logging.getLogger('pipeline.cost')


_cost_config = None


class UnknownSourceKey(KeyError):
    """Raised when a batch names a source missing from the price table."""


def _default_config():
    """Hardcoded fallback if YAML is missing."""
    return {
        'version': 'default',
        'currency': 'USD',
        'sources': {
            'owned_data':                {'per_1k': 0.0},
            'business_discovery':        {'per_1k': 0.0},
            'instagram_api_scraper':     {'per_1k': 2.30},
            'instagram_profile_scraper': {'per_1k': 2.30},
            'tiktok_scraper':            {'per_1k': 3.00, 'start_fee': 0.03, 'download_cost': 0.001},
            'youtube_channel':           {'per_1k': 2.50},
        },
    }


def load_cost_config() -> dict:
    """Load cost config from YAML, with in-memory cache and hardcoded fallback."""
    global _cost_config
    if _cost_config is not None:
        return _cost_config

    config_path = os.path.join(os.path.dirname(__file__), 'cost_config.yaml')
    try:
        with open(config_path, 'r') as f:
            _cost_config = yaml.safe_load(f)
        logger.info("Config loaded from YAML (version=%s)", _cost_config.get('version', '?'))
    except Exception as e:
        logger.warning("YAML config not found (%s), using defaults", e)
        _cost_config = _default_config()

    return _cost_config


def get_price(source_key: str) -> dict:
    """Price entry for a source: per_1k, optional start_fee and download_cost."""
    sources = load_cost_config().get('sources', {})
    if source_key not in sources:
        raise UnknownSourceKey(source_key)
    return sources[source_key]


def known_sources() -> List[str]:
    return sorted(load_cost_config().get('sources', {}).keys())


def reset_cache():
    """Reset the in-memory cache (useful for testing)."""
    global _cost_config
    _cost_config = None


# ── Estimates ─────────────────────────────────────────────────────────────────

@dataclass
class CostLine:
    source_key: str
    unit_cost: float
    item_count: int
    cost: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source_key': self.source_key,
            'unit_cost': self.unit_cost,
            'item_count': self.item_count,
            'cost': self.cost,
        }


@dataclass
class CostEstimate:
    lines: List[CostLine] = field(default_factory=list)
    total: float = 0.0
    currency: str = 'USD'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'lines': [line.to_dict() for line in self.lines],
            'total': self.total,
            'currency': self.currency,
        }


BatchSpec = Union[Dict[str, Any], tuple]


def _unpack(batch: BatchSpec):
    if isinstance(batch, dict):
        return batch['source_key'], int(batch.get('item_count', 0)), batch.get('options') or {}
    source_key, item_count = batch[0], int(batch[1])
    options = batch[2] if len(batch) > 2 else {}
    return source_key, item_count, options or {}


def estimate(batches: Iterable[BatchSpec]) -> CostEstimate:
    """
    Estimate the money cost of a list of (source_key, item_count, options) batches.

    Options:
        include_start_fee — add the source's fixed per-run fee (only for non-empty runs)
        include_downloads — add per-item media download cost
    """
    cfg = load_cost_config()
    result = CostEstimate(currency=cfg.get('currency', 'USD'))
    for batch in batches:
        source_key, item_count, options = _unpack(batch)
        price = get_price(source_key)
        unit_cost = float(price.get('per_1k', 0.0)) / 1000
        cost = unit_cost * item_count
        if options.get('include_start_fee') and item_count > 0:
            cost += float(price.get('start_fee', 0.0))
        if options.get('include_downloads'):
            cost += float(price.get('download_cost', 0.0)) * item_count
        result.lines.append(CostLine(
            source_key=source_key,
            unit_cost=round(unit_cost, 6),
            item_count=item_count,
            cost=round(cost, 4),
        ))
    result.total = round(sum(line.cost for line in result.lines), 4)
    return result


def estimate_one(source_key: str, item_count: int, **options) -> float:
    """Shortcut for a single batch; returns the total."""
    return estimate([{'source_key': source_key, 'item_count': item_count, 'options': options}]).total
