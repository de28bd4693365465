"""
Root pytest configuration: markers derived from each test's location
"""
from tests.markers import DOMAIN_MARKERS, OTHER_MARKERS, PRIMARY_MARKERS, apply_auto_markers


def pytest_configure(config):
    for marker_name, description in {**PRIMARY_MARKERS, **DOMAIN_MARKERS, **OTHER_MARKERS}.items():
        config.addinivalue_line("markers", f"{marker_name}: {description}")


def pytest_collection_modifyitems(config, items):
    # tests/unit/d3_reconciliation/test_x.py -> unit + d3_reconciliation
    for item in items:
        apply_auto_markers(item)
