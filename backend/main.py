# -*- coding: utf-8 -*-
import logging
import traceback
from datetime import datetime, timezone

from blindbox.app import create_app
from blindbox.managers.Config import Config

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

app = create_app()


if __name__ == '__main__':
    try:
        app.run(
            host=Config.get_value('host'),
            port=Config.get_value('port'),
            debug=False,  # 生产环境关闭debug
            threaded=True
        )
    except Exception:
        error_stack = traceback.format_exc()
        with open("error.log", "a", encoding="utf-8") as f:
            f.write(f"[{datetime.now(timezone.utc)}] {error_stack}\n")
        raise
