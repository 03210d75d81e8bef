"""addonkit - 插件打包工具的外部依赖拉取与同步"""

__version__ = "0.4.0"
