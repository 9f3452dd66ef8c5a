from dnslib.server import BaseResolver
from dnslib import DNSRecord, RCODE
import logging, socket, threading, time

from filters import FilterStore
from notifications import EVENT_AFTER_UPDATE, EVENT_BEFORE_UPDATE
from lists import WHITELIST_USER, BLACKLIST_USER, QUERY_LOG

logger = logging.getLogger(__name__)

HOSTS_ADDRESSES = {"0.0.0.0", "127.0.0.1", "::", "::1"}


def rule_domain(line):
    """Domain blocked by a hosts / ||adblock^ / plain-domain line, or None."""
    line = line.strip().lower()
    if not line or line[0] in "#!":
        return None

    if line.startswith("||"):
        end = line.find("^")
        if end == -1 or "$" in line[end:]:
            return None
        line = line[2:end]
    else:
        parts = line.split()
        if len(parts) >= 2 and parts[0] in HOSTS_ADDRESSES:
            line = parts[1]
        elif len(parts) != 1:
            return None

    if "/" in line or "*" in line or "." not in line:
        return None
    return line.rstrip(".")


class FilteringResolver(BaseResolver):
    def __init__(self, store: FilterStore, filtering_enabled, upstream_dns,
                 log_file=QUERY_LOG, pause_timeout=5.0):
        self.store = store
        self.filtering_enabled = filtering_enabled
        self.upstream = (upstream_dns, 53)
        self.log_file = log_file
        self.pause_timeout = pause_timeout

        # cleared while filter files are being swapped
        self.ready = threading.Event()
        self.blocked = frozenset()
        self.reload()

    # ---------- Filter notifications ----------

    def on_filters_event(self, event):
        if event == EVENT_BEFORE_UPDATE:
            self.ready.clear()
        elif event == EVENT_AFTER_UPDATE:
            self.reload()

    def reload(self):
        domains = set()
        for f in self.store.list():
            if not f.enabled:
                continue
            try:
                with open(f.path, encoding="utf-8", errors="replace") as fh:
                    for line in fh:
                        d = rule_domain(line)
                        if d:
                            domains.add(d)
            except OSError as e:
                logger.error("Resolver: can't read filter %s: %s", f.path, e)

        self.blocked = frozenset(domains)
        self.ready.set()
        logger.info("Resolver: loaded %d blocked domains", len(self.blocked))

    def is_blocked(self, qname):
        if not self.ready.wait(self.pause_timeout):
            logger.warning("Resolver: filters still updating, using previous rules")
        labels = qname.split(".")
        return any(".".join(labels[i:]) in self.blocked for i in range(len(labels) - 1))

    # ---------- Resolution ----------

    def resolve(self, request, handler):
        qname = str(request.q.qname).rstrip('.').lower()

        if not self.filtering_enabled:
            return self.forward(request)

        if qname in self._load(WHITELIST_USER):
            self._log(qname, "allow (user whitelist)")
            return self.forward(request)

        if qname in self._load(BLACKLIST_USER):
            self._log(qname, "block (user blacklist)")
            return self._block(request)

        if self.is_blocked(qname):
            self._log(qname, "block (filter)")
            return self._block(request)

        self._log(qname, "allow")
        return self.forward(request)

    # ---------- Helpers ----------

    def forward(self, request):
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.settimeout(5)
            sock.sendto(request.pack(), self.upstream)
            data, _ = sock.recvfrom(4096)
        except OSError as e:
            logger.warning("Resolver: upstream %s failed: %s", self.upstream[0], e)
            reply = request.reply()
            reply.header.rcode = RCODE.SERVFAIL
            return reply
        finally:
            sock.close()
        return DNSRecord.parse(data)

    def _block(self, request):
        reply = request.reply()
        reply.header.rcode = RCODE.NXDOMAIN
        return reply

    def _load(self, path):
        try:
            with open(path) as f:
                return set(line.strip().lower() for line in f if line.strip())
        except FileNotFoundError:
            return set()

    def _log(self, qname, verdict):
        if not self.log_file:
            return
        with open(self.log_file, "a") as f:
            f.write(
                f"{time.strftime('%Y-%m-%d %H:%M:%S')} - {qname} - {verdict}\n"
            )
