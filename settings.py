import copy
import json
import os

import requests

from filters import FilterRecord, FiltersConf
from lists import CONFIG_DIR, FILTER_DIR

CONFIG_PATH = os.environ.get("FILTERS_CONFIG", os.path.join(CONFIG_DIR, "config.json"))

DEFAULT_CONFIG = {
    "filtering_enabled": True,
    "upstream_dns": "1.1.1.1",
    "dns_listen_address": "0.0.0.0",
    "dns_port": 53,
    "dashboard_port": 5000,
    "log_level": "INFO",
    "filter_dir": FILTER_DIR,
    "filters_update_interval": 24,  # hours
    "filters_poll_period": 3600,    # seconds between idle re-scans
    "download_timeout": 30,
    "observer_timeout": 60,
    "filters": [],
}


def load_config(path: str = CONFIG_PATH) -> dict:
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    if os.path.exists(path):
        with open(path, "r") as f:
            cfg.update(json.load(f))
    return cfg


def save_config(config: dict, path: str = CONFIG_PATH):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as f:
        json.dump(config, f, indent=2)


def filters_conf(config: dict, session=None) -> FiltersConf:
    """
    Build the filter store configuration from the JSON settings.
    """
    filters = [
        FilterRecord(
            id=int(item["id"]),
            enabled=bool(item.get("enabled", True)),
            name=item["name"],
            url=item["url"],
        )
        for item in config.get("filters", [])
    ]
    return FiltersConf(
        filter_dir=config["filter_dir"],
        update_interval_hours=int(config["filters_update_interval"]),
        session=session if session is not None else requests.Session(),
        download_timeout=float(config["download_timeout"]),
        filters=filters,
    )


def save_filters(config: dict, conf: FiltersConf, path: str = CONFIG_PATH):
    config["filters"] = [
        {"id": f.id, "enabled": f.enabled, "name": f.name, "url": f.url}
        for f in conf.filters
    ]
    save_config(config, path)
