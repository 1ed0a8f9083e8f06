import logging
import os

from edublog import create_app
from edublog.config_env import env_bool, env_value, load_env_once

load_env_once()
logging.basicConfig(
    level=(env_value("LOG_LEVEL", "INFO") or "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app()

with app.app_context():
    for rule in app.url_map.iter_rules():
        logging.debug("Endpoint: %s, URL: %s, Methods: %s", rule.endpoint, rule.rule, sorted(rule.methods))

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    app.run(host="0.0.0.0", port=port, debug=env_bool("FLASK_DEBUG", False))
