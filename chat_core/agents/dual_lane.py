"""双 lane 编排：并行发送、回复转发与自动对战。"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple
import asyncio
import logging

from chat_core.agents.chat_engine import ChatEngine
from chat_core.config.settings import settings
from chat_core.domain.exceptions import ValidationError
from chat_core.domain.models import Attachment, Message, Role
from chat_core.infrastructure.logging.logger import logger

LANES: Tuple[str, str] = ("left", "right")
DIRECTIONS: Dict[str, Tuple[str, str]] = {
    "left_to_right": ("left", "right"),
    "right_to_left": ("right", "left"),
}

OnUpdate = Callable[[str, List[Message]], None]
OnError = Callable[[str, BaseException], None]


@dataclass
class Lane:
    name: str
    engine: ChatEngine
    messages: List[Message] = field(default_factory=list)
    model_id: str = ""
    model_name: str = "AI"

    def last_message(self) -> Optional[Message]:
        return self.messages[-1] if self.messages else None

    def relayable_reply(self) -> Optional[Message]:
        """最后一条已完成、非错误且有内容的模型回复。"""

        last = self.last_message()
        if last is not None and last.role is Role.MODEL and not last.is_error and last.content:
            return last
        return None


class DualLaneOrchestrator:
    """持有左右两个 lane，负责广播发送、手动转发和自动对战循环。"""

    def __init__(
        self,
        left_engine: ChatEngine,
        right_engine: ChatEngine,
        on_update: Optional[OnUpdate] = None,
        on_error: Optional[OnError] = None,
        cooldown: Optional[float] = None,
        sleep: Optional[Callable] = None,
    ):
        self.lanes: Dict[str, Lane] = {
            "left": Lane(name="left", engine=left_engine),
            "right": Lane(name="right", engine=right_engine),
        }
        self._on_update = on_update
        self._on_error = on_error
        self._cooldown = settings.auto_battle_cooldown if cooldown is None else cooldown
        self._sleep = sleep or asyncio.sleep
        self._auto_battle = False

    def lane(self, name: str) -> Lane:
        try:
            return self.lanes[name]
        except KeyError:
            raise ValidationError(code="UNKNOWN_LANE", message=f"未知的 lane: {name}") from None

    def select_model(self, lane: str, model_id: str, model_name: Optional[str] = None) -> None:
        target = self.lane(lane)
        target.model_id = model_id
        target.model_name = model_name or model_id
        logger.info("Model selected", extra={"extra": {"lane": lane, "model": model_id}})

    @property
    def both_idle(self) -> bool:
        return not any(l.engine.is_busy for l in self.lanes.values())

    @property
    def auto_battle_enabled(self) -> bool:
        return self._auto_battle

    async def send(
        self,
        text: str,
        attachments: Sequence[Attachment] = (),
        target: str = "both",
        hidden: bool = False,
    ) -> Dict[str, BaseException]:
        """向一个或两个 lane 并行发送同一轮输入，返回各 lane 的失败。"""

        names = LANES if target == "both" else (self.lane(target).name,)
        results = await asyncio.gather(
            *(self._send_lane(self.lanes[n], text, attachments, hidden) for n in names)
        )
        return {name: exc for name, exc in zip(names, results) if exc is not None}

    async def relay(self, direction: str) -> bool:
        """把源 lane 的最新回复作为隐藏用户消息发给另一个 lane。"""

        source, target = self._resolve(direction)
        if not self.both_idle:
            logger.info("Relay skipped, lane busy", extra={"extra": {"direction": direction}})
            return False
        reply = source.relayable_reply()
        if reply is None:
            raise ValidationError(code="NOTHING_TO_RELAY", message=f"{source.name} 没有可转发的 AI 回复")
        await self.send(reply.content, target=target.name, hidden=True)
        return True

    def next_battle_direction(self) -> Optional[str]:
        left, right = self.lanes["left"], self.lanes["right"]
        if not left.model_id or not right.model_id:
            return None
        left_last, right_last = left.last_message(), right.last_message()
        if left.relayable_reply() and (right_last is None or right_last.created_at < left_last.created_at):
            return "left_to_right"
        if right.relayable_reply() and (left_last is None or left_last.created_at < right_last.created_at):
            return "right_to_left"
        return None

    async def run_auto_battle(self, max_turns: Optional[int] = None) -> int:
        """两边轮流把对方的回复当作输入，返回完成的轮数。"""

        self._auto_battle = True
        turns = 0
        logger.info("Auto battle started", extra={"extra": {"max_turns": max_turns}})
        try:
            while self._auto_battle:
                if not self.both_idle:
                    break
                direction = self.next_battle_direction()
                if direction is None:
                    break
                await self._sleep(self._cooldown)
                # 冷却期间用户可能手动发送或停止，需要重新确认
                if not self._auto_battle or not self.both_idle:
                    break
                direction = self.next_battle_direction()
                if direction is None:
                    break
                source, target = self._resolve(direction)
                reply = source.relayable_reply()
                if reply is None:
                    break
                failures = await self.send(reply.content, target=target.name)
                turns += 1
                if failures:
                    break
                if max_turns is not None and turns >= max_turns:
                    break
        finally:
            self._auto_battle = False
            logger.info("Auto battle finished", extra={"extra": {"turns": turns}})
        return turns

    def stop_auto_battle(self) -> None:
        self._auto_battle = False

    def stop(self, lane: str) -> None:
        self.lane(lane).engine.stop()
        self._auto_battle = False

    def stop_all(self) -> None:
        for name in LANES:
            self.stop(name)

    async def _send_lane(
        self,
        lane: Lane,
        text: str,
        attachments: Sequence[Attachment],
        hidden: bool,
    ) -> Optional[BaseException]:
        try:
            await lane.engine.send(
                text,
                attachments,
                list(lane.messages),
                lane.model_id,
                lane.model_name,
                self._sink_for(lane),
                hidden=hidden,
            )
        except Exception as exc:
            logger.log(
                logging.WARNING,
                "Lane send failed",
                extra={"extra": {"lane": lane.name, "error": str(exc)[:500]}},
            )
            if self._on_error is not None:
                self._on_error(lane.name, exc)
            return exc
        return None

    def _sink_for(self, lane: Lane) -> Callable[[List[Message]], None]:
        def sink(messages: List[Message]) -> None:
            lane.messages = list(messages)
            if self._on_update is not None:
                self._on_update(lane.name, lane.messages)

        return sink

    def _resolve(self, direction: str) -> Tuple[Lane, Lane]:
        try:
            src, dst = DIRECTIONS[direction]
        except KeyError:
            raise ValidationError(code="UNKNOWN_DIRECTION", message=f"未知的转发方向: {direction}") from None
        return self.lanes[src], self.lanes[dst]
