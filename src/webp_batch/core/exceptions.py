"""项目内使用的自定义异常定义。"""


class WebpBatchError(Exception):
    """基础异常类型。"""


class InvalidConfigurationError(WebpBatchError):
    """配置不合法时抛出。"""


class ConversionCancelled(WebpBatchError):
    """任务被用户取消时抛出。"""


class BatchAlreadyRunning(WebpBatchError):
    """同一个调度器上已有批次在执行。"""


class InvalidStatusTransition(WebpBatchError):
    """结果记录的状态试图回退或跳跃。"""
