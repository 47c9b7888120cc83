"""Tests for app.pipeline.cost_config — price table loading and cost estimates."""
import pytest
from unittest.mock import patch

from app.pipeline import cost_config
from app.pipeline.cost_config import (
    UnknownSourceKey, estimate, estimate_one, get_price, known_sources,
    load_cost_config, reset_cache,
)


@pytest.fixture(autouse=True)
def _fresh_config():
    reset_cache()
    yield
    reset_cache()


class TestLoadCostConfig:

    def test_loads_yaml(self):
        cfg = load_cost_config()
        assert cfg['currency'] == 'USD'
        assert 'instagram_api_scraper' in cfg['sources']

    def test_cached_after_first_load(self):
        first = load_cost_config()
        assert load_cost_config() is first

    def test_falls_back_to_defaults_when_yaml_missing(self):
        with patch('app.pipeline.cost_config.open', side_effect=FileNotFoundError('gone'), create=True):
            cfg = load_cost_config()
        assert cfg['version'] == 'default'
        assert cfg['sources']['tiktok_scraper']['start_fee'] == 0.03

    def test_yaml_and_defaults_agree_on_prices(self):
        yaml_sources = load_cost_config()['sources']
        default_sources = cost_config._default_config()['sources']
        assert set(yaml_sources) == set(default_sources)
        for key, price in default_sources.items():
            assert yaml_sources[key]['per_1k'] == price['per_1k']

    def test_known_sources_sorted(self):
        keys = known_sources()
        assert keys == sorted(keys)
        assert 'business_discovery' in keys


class TestGetPrice:

    def test_known_key(self):
        assert get_price('instagram_api_scraper')['per_1k'] == 2.30

    def test_unknown_key_raises(self):
        with pytest.raises(UnknownSourceKey):
            get_price('carrier_pigeon')

    def test_unknown_key_is_a_key_error(self):
        with pytest.raises(KeyError):
            get_price('carrier_pigeon')


class TestEstimate:

    def test_single_instagram_batch(self):
        result = estimate([{'source_key': 'instagram_api_scraper', 'item_count': 1000}])
        assert result.total == 2.30
        assert len(result.lines) == 1
        assert result.lines[0].unit_cost == 0.0023
        assert result.lines[0].cost == 2.30

    def test_tuple_batches(self):
        result = estimate([('instagram_api_scraper', 30), ('business_discovery', 70)])
        assert result.lines[0].cost == 0.069
        assert result.lines[1].cost == 0.0
        assert result.total == 0.069

    def test_free_sources_cost_nothing(self):
        result = estimate([('owned_data', 500), ('business_discovery', 500)])
        assert result.total == 0.0

    def test_start_fee_only_when_requested(self):
        without = estimate_one('tiktok_scraper', 100)
        with_fee = estimate_one('tiktok_scraper', 100, include_start_fee=True)
        assert without == 0.3
        assert with_fee == 0.33

    def test_start_fee_not_charged_for_empty_run(self):
        assert estimate_one('tiktok_scraper', 0, include_start_fee=True) == 0.0

    def test_downloads_add_per_item_cost(self):
        assert estimate_one('tiktok_scraper', 100, include_downloads=True) == 0.4

    def test_all_options(self):
        assert estimate_one('tiktok_scraper', 100, include_start_fee=True, include_downloads=True) == 0.43

    def test_rounded_to_four_places(self):
        result = estimate([('youtube_channel', 1)])
        assert result.lines[0].cost == 0.0025
        assert result.total == 0.0025

    def test_total_is_sum_of_lines(self):
        result = estimate([('instagram_api_scraper', 123), ('youtube_channel', 77), ('tiktok_scraper', 5)])
        assert result.total == round(sum(line.cost for line in result.lines), 4)

    def test_empty_batches(self):
        result = estimate([])
        assert result.total == 0.0
        assert result.lines == []

    def test_unknown_key_raises(self):
        with pytest.raises(UnknownSourceKey):
            estimate([('instagram_api_scraper', 10), ('nope', 1)])

    def test_deterministic(self):
        batches = [('instagram_api_scraper', 42), ('tiktok_scraper', 7, {'include_start_fee': True})]
        assert estimate(batches).to_dict() == estimate(batches).to_dict()

    def test_to_dict(self):
        d = estimate([('instagram_api_scraper', 1000)]).to_dict()
        assert d['currency'] == 'USD'
        assert d['total'] == 2.30
        assert d['lines'][0]['source_key'] == 'instagram_api_scraper'
        assert d['lines'][0]['item_count'] == 1000
