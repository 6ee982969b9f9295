"""系统提示词加载工具。

按语言(locale) 从 prompts/<locale> 目录读取 system prompt 文本，
用于构造 ConversationContext 的 system 消息。
"""

from pathlib import Path


PROMPTS_DIR = Path(__file__).resolve().parent


def load_system_prompt(locale: str = "en") -> str:
    """根据语言加载语音助手的系统提示词文本。"""

    fname = PROMPTS_DIR / locale / "jarvis_system.md"
    return fname.read_text(encoding="utf-8").strip()
