from dnslib.server import DNSServer
from filtering_resolver import FilteringResolver
from filter_updater import FilterUpdater
from filters import FilterStore
from notifications import NotificationBus
from settings import load_config, filters_conf, CONFIG_PATH
from app import Dashboard
from threading import Thread
import logging

if __name__ == "__main__":
    config = load_config()

    logging.basicConfig(
        level=config["log_level"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    store = FilterStore(filters_conf(config))
    store.load_existing()

    bus = NotificationBus(timeout=config["observer_timeout"])
    updater = FilterUpdater(store, bus, poll_period=config["filters_poll_period"])

    resolver = FilteringResolver(
        store,
        filtering_enabled=config["filtering_enabled"],
        upstream_dns=config["upstream_dns"],
    )
    bus.add_user(resolver.on_filters_event)

    updater.start()

    dashboard = Dashboard(store, updater, config, CONFIG_PATH)
    Thread(target=lambda: dashboard.start(port=config["dashboard_port"]), daemon=True).start()

    DNSServer(resolver, port=config["dns_port"], address=config["dns_listen_address"]).start()
