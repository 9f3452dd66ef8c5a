#app.py

from flask import Flask, render_template_string, request, redirect, url_for, flash, jsonify
from filter_downloader import DownloadError
from filters import (
    DuplicateFilterError, FilterRecord,
    STATUS_NOT_FOUND, STATUS_CHANGED_ENABLED, STATUS_CHANGED_URL,
)
from settings import save_filters
from lists import QUERY_LOG
import os
import logging

logger = logging.getLogger(__name__)


#-----------------------HTML TEMPLATE-----------------------

TEMPLATE = """
<!doctype html>
<html>
<head>
  <title>DNS Filter Lists</title>
  <style>
    body { font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif;
           background: #f9f9f9; padding: 40px; max-width: 900px; margin: auto; }
    h1 { color: #333; border-bottom: 2px solid #ccc; padding-bottom: 10px; }
    table { width: 100%; border-collapse: collapse; margin-bottom: 20px; }
    td, th { border-bottom: 1px solid #ddd; padding: 6px; text-align: left; }
    input[type="text"] { width: 100%; padding: 8px; margin: 6px 0 12px; }
    button { background-color: #4CAF50; color: white; padding: 6px 14px;
             border: none; border-radius: 4px; cursor: pointer; }
    .success { color: green; font-weight: bold; margin-bottom: 20px; }
  </style>
</head>
<body>
  <h1>Filter Lists</h1>

  <div style="margin-bottom: 20px;">
    ✅ Allowed: {{ stats.allowed }} &nbsp; ❌ Blocked: {{ stats.blocked }} &nbsp; 📊 Total: {{ stats.total }}
  </div>

  {% with messages = get_flashed_messages() %}
    {% if messages %}
      <div class="success">{{ messages[0] }}</div>
    {% endif %}
  {% endwith %}

  <table>
    <tr><th>Enabled</th><th>Name</th><th>URL</th><th>Rules</th><th>Last updated</th><th></th></tr>
    {% for f in filters %}
    <tr>
      <td>{{ "yes" if f.enabled else "no" }}</td>
      <td>{{ f.name }}</td>
      <td>{{ f.url }}</td>
      <td>{{ f.rule_count }}</td>
      <td>{{ f.last_updated.strftime('%Y-%m-%d %H:%M') if f.last_updated else "-" }}</td>
      <td>
        <form method="post" action="{{ url_for('modify_filter') }}">
          <input type="hidden" name="url" value="{{ f.url }}">
          <input type="text" name="name" value="{{ f.name }}">
          <input type="text" name="new_url" value="{{ f.url }}">
          <label><input type="checkbox" name="enabled" value="1" {% if f.enabled %}checked{% endif %}> enabled</label>
          <button type="submit">💾</button>
        </form>
        <form method="post" action="{{ url_for('delete_filter') }}">
          <input type="hidden" name="url" value="{{ f.url }}">
          <button type="submit">🗑️</button>
        </form>
      </td>
    </tr>
    {% endfor %}
  </table>

  <form method="post" action="{{ url_for('refresh_filters') }}">
    <button type="submit">🔄 Update now</button>
  </form>

  <form method="post" action="{{ url_for('add_filter') }}" style="margin-top: 20px;">
    <label><strong>Name:</strong></label>
    <input type="text" name="name">
    <label><strong>URL:</strong></label>
    <input type="text" name="url" placeholder="https://example.com/filter.txt">
    <button type="submit">➕ Add Filter</button>
  </form>
</body>
</html>
"""

#-----------------------MAIN FLASK DASHBOARD CLASS-----------------------

class Dashboard:
    def __init__(self, store, updater=None, config=None, config_path=None, log_file=QUERY_LOG):
        self.store = store
        self.updater = updater
        self.config = config
        self.config_path = config_path
        self.log_file = log_file

        self.app = Flask(__name__)
        self.app.secret_key = 'dev'
        self._setup_routes()

        # Suppress Werkzeug logging for cleaner output
        logging.getLogger('werkzeug').setLevel(logging.ERROR)

#-----------------------ROUTE SETUP-----------------------

    def _setup_routes(self):
        @self.app.route("/")
        def dashboard():
            return render_template_string(
                TEMPLATE, filters=self.store.list(), stats=self.get_log_stats(self.log_file)
            )

        @self.app.route("/api/filters")
        def api_filters():
            return jsonify([self._to_json(f) for f in self.store.list()])

#-----------------------FILTER ROUTES-----------------------
        @self.app.route("/filters/add", methods=["POST"])
        def add_filter():
            name = request.form.get("name", "").strip()
            url = request.form.get("url", "").strip()
            if not name or not url:
                flash("Name and URL are required.")
                return redirect(url_for("dashboard"))

            try:
                f = self.store.add(FilterRecord(name=name, url=url))
            except (DuplicateFilterError, DownloadError, OSError) as e:
                flash(f"❌ {e}")
                return redirect(url_for("dashboard"))

            self._save()
            flash(f"✅ Filter added: {f.name} ({f.rule_count} rules)")
            return redirect(url_for("dashboard"))

        @self.app.route("/filters/delete", methods=["POST"])
        def delete_filter():
            url = request.form.get("url", "").strip()
            f = self.store.delete(url)
            if f is None:
                flash("Filter not found.")
                return redirect(url_for("dashboard"))

            self._remove_files(f)
            self._save()
            flash(f"Filter removed: {f.name}")
            return redirect(url_for("dashboard"))

        @self.app.route("/filters/modify", methods=["POST"])
        def modify_filter():
            url = request.form.get("url", "").strip()
            name = request.form.get("name", "").strip()
            new_url = request.form.get("new_url", "").strip() or url
            enabled = request.form.get("enabled") == "1"
            if not name:
                flash("Name is required.")
                return redirect(url_for("dashboard"))

            try:
                st = self.store.modify(url, enabled, name, new_url)
            except DuplicateFilterError as e:
                flash(f"❌ {e}")
                return redirect(url_for("dashboard"))

            if st & STATUS_NOT_FOUND:
                flash("Filter not found.")
                return redirect(url_for("dashboard"))

            # New URL or re-enabled filter: fetch it on the next pass
            if st & STATUS_CHANGED_URL or (st & STATUS_CHANGED_ENABLED and enabled):
                self._refresh(new_url)

            self._save()
            flash("⚙️ Filter updated.")
            return redirect(url_for("dashboard"))

        @self.app.route("/filters/refresh", methods=["POST"])
        def refresh_filters():
            n = self._refresh()
            flash(f"🔄 {n} filters scheduled for update.")
            return redirect(url_for("dashboard"))


#-----------------------HELPERS-----------------------

    def _refresh(self, url=None):
        n = self.store.refresh(url)
        if self.updater is not None:
            self.updater.wake()
        return n

    def _save(self):
        if self.config is None or self.config_path is None:
            return
        save_filters(self.config, self.store.snapshot_config(), self.config_path)

    def _remove_files(self, f):
        paths = [f.path]
        if f.pending_id:
            paths.append(self.store.filter_path(f.pending_id))
        for path in paths:
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.error("Dashboard: can't remove %s: %s", path, e)

    @staticmethod
    def _to_json(f):
        return {
            "id": f.id,
            "enabled": f.enabled,
            "name": f.name,
            "url": f.url,
            "rules_count": f.rule_count,
            "last_updated": f.last_updated.isoformat() if f.last_updated else None,
            "path": f.path,
        }

    def get_log_stats(self, log_path):
        allowed = blocked = 0
        try:
            with open(log_path, "r") as f:
                for line in f:
                    if " - allow" in line:
                        allowed += 1
                    elif " - block" in line:
                        blocked += 1
        except FileNotFoundError:
            pass
        return {"allowed": allowed, "blocked": blocked, "total": allowed + blocked}

    def start(self, host="0.0.0.0", port=5000):
        self.app.run(host=host, port=port, debug=False, use_reloader=False)
