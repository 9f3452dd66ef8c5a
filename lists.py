import os

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
CONFIG_DIR = os.path.join(BASE_DIR, "config")

FILTER_DIR = os.path.join(CONFIG_DIR, "filters")
QUERY_LOG = os.path.join(CONFIG_DIR, "queries.log")

WHITELIST_USER = os.path.join(CONFIG_DIR, "whitelist_user.txt")
BLACKLIST_USER = os.path.join(CONFIG_DIR, "blacklist_user.txt")
