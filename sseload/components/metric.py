from typing import Optional, Union


class Metric:
    def __init__(
        self,
        text: str,
        value: Union[float, str],
        suffix: str = "",
        cdt: Optional[bool] = None,
    ):
        """
        A single line of the final report. `cdt` marks the line as passed (True),
        failed (False) or informative (None).
        """
        self._text = text
        self._value = value
        self._suffix = suffix
        self._cdt = cdt

    @property
    def text(self) -> str:
        return self._text

    @property
    def value(self) -> Union[float, str]:
        return self._value

    @property
    def suffix(self) -> str:
        return self._suffix

    @property
    def cdt(self) -> Optional[bool]:
        return self._cdt

    def line(self) -> str:
        if self.cdt is None:
            prefix = " "
        else:
            prefix = "✓" if self.cdt else "✗"

        if isinstance(self.value, str):
            value_format = "s"
        elif isinstance(self.value, int):
            value_format = "6d"
        else:
            value_format = "6.2f"

        return (
            f"{prefix} {self.text} {'.'*max(0, 30-len(self.text))}: "
            + f"{self.value:{value_format}} {self.suffix}".rstrip()
        )

    def __repr__(self):
        return f"<Metric {self.text}={self.value} {self.suffix}>"
