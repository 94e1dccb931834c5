"""离线开发用的 Echo Provider，不发起任何网络请求。"""

from relay_core.domain.models import Content, GenerateRequest, GenerateResponse, Part


class EchoClient:
    name = "echo"

    def __init__(self, cfg=None):
        self._settings = cfg

    async def generate(self, req: GenerateRequest) -> GenerateResponse:
        user_turns = [c for c in req.contents if c.role == "user"]
        last = user_turns[-1] if user_turns else None
        images = sum(1 for p in last.parts if p.image is not None) if last else 0
        text = f"[ECHO RESPONSE]\n{(last.text if last else None) or '(no user input)'}"
        if images:
            text += f"\n({images} image(s) attached)"
        return GenerateResponse(
            provider="echo",
            model=req.config.name,
            text=text,
            content=Content(role="model", parts=[Part(text=text)]),
            finish_reason="STOP",
            raw={},
        )
