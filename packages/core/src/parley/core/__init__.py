"""Parley Core -- 领域模型、异常体系与 SQLite 持久化"""
