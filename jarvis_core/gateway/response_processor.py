"""把模型原始回答转换成适合 AR 眼镜显示 / 语音播报的文本。"""

MAX_DISPLAY_LENGTH = 300
MIN_SENTENCE_BREAK = 200
ELLIPSIS = "..."


class ResponseProcessor:
    """纯函数式处理器，无内部状态。

    1. 去掉字面的强调标记 ``**`` 与 ``*``；
    2. 长度 <= max_length 时原样返回；
    3. 否则从 max_length 处向前找最后一个句号，位置 > min_break 时截断到句号（含）；
       找不到合适句号则硬截断到 max_length 并追加省略号。
    """

    def __init__(
        self,
        max_length: int = MAX_DISPLAY_LENGTH,
        min_break: int = MIN_SENTENCE_BREAK,
        ellipsis: str = ELLIPSIS,
    ):
        self.max_length = max_length
        self.min_break = min_break
        self.ellipsis = ellipsis

    def process(self, text: str) -> str:
        text = (text or "").replace("**", "").replace("*", "")
        if len(text) <= self.max_length:
            return text
        last_period = text.rfind(".", 0, self.max_length + 1)
        if last_period > self.min_break:
            return text[: last_period + 1]
        return text[: self.max_length] + self.ellipsis


def process_response(text: str) -> str:
    return ResponseProcessor().process(text)
