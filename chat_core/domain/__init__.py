"""领域层模型与协议。

包含：
- models: 统一的 Message / GenerationConfig / ProviderIdentity 等模型。
- exceptions: 业务异常类型定义。
- error_translator: 原始错误到用户可读提示的映射。
"""
