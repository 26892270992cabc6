# -*- coding: utf-8 -*-
from flask_sqlalchemy import SQLAlchemy

"""
整个 flask 上下文中共用同一个 db，其他文件要使用 db 时均从此文件导入，
由 create_app 负责初始化
"""
db = SQLAlchemy()
