"""接口路由包。"""
