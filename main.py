"""
小白卡报告解读后端 - 启动入口

运行方式：python main.py [--host 127.0.0.1] [--port 8000]
未指定时使用 BACKEND_HOST / BACKEND_PORT 配置
"""

import argparse
import logging

import uvicorn

from apps.app import create_app
from apps.settings import load_settings


def main():
    """启动HTTP API服务器"""
    settings = load_settings()
    parser = argparse.ArgumentParser(description='小白卡报告解读后端')
    parser.add_argument('--host', default=settings.host, help='服务器主机地址')
    parser.add_argument('--port', type=int, default=settings.port, help='服务器端口')
    args = parser.parse_args()

    app = create_app()
    logging.getLogger(__name__).info("Backend listening on http://%s:%s", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
