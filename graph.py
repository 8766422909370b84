# graph.py
from typing import TYPE_CHECKING, Optional, TypedDict

from langgraph.graph import END, StateGraph

from errors import CardSnapError, MissingCredential
from models import Card, ExtractedFields

if TYPE_CHECKING:
    from controller import CardController


class CaptureState(TypedDict, total=False):
    card: Card                      # 仮登録したカード
    credential: Optional[str]
    extracted: ExtractedFields
    error: Optional[str]            # 失敗理由
    missing_credential: bool
    result: Optional[Card]          # 最終的に保存したカード


def create_graph(controller: "CardController"):
    """Build the capture pipeline: check → extract → reconcile|fail → sync."""

    async def check(state: CaptureState) -> CaptureState:
        # API キーがなければ外部呼び出しの前に失敗させる
        credential = state.get("credential")
        if not credential or not credential.strip():
            state["error"] = str(MissingCredential())
            state["missing_credential"] = True
        return state

    async def extract(state: CaptureState) -> CaptureState:
        card = state["card"]
        try:
            state["extracted"] = await controller.extractor.extract(
                card["image_uri"], state["credential"])
        except CardSnapError as e:
            state["error"] = str(e) or "Unknown error"
            state["missing_credential"] = isinstance(e, MissingCredential)
        return state

    async def reconcile(state: CaptureState) -> CaptureState:
        state["result"] = controller.commit_processed(state["card"], state["extracted"])
        return state

    async def fail(state: CaptureState) -> CaptureState:
        state["result"] = controller.commit_failed(
            state["card"], state["error"], state.get("missing_credential", False))
        return state

    async def sync(state: CaptureState) -> CaptureState:
        state["result"] = await controller.sync(state["result"])
        return state

    sg = StateGraph(CaptureState)
    sg.add_node("check", check)
    sg.add_node("extract", extract)
    sg.add_node("reconcile", reconcile)
    sg.add_node("fail", fail)
    sg.add_node("sync", sync)

    sg.set_entry_point("check")
    sg.add_conditional_edges(
        "check",
        lambda s: "fail" if s.get("error") else "extract",
        ["fail", "extract"],
    )
    sg.add_conditional_edges(
        "extract",
        lambda s: "fail" if s.get("error") else "reconcile",
        ["fail", "reconcile"],
    )
    sg.add_conditional_edges(
        "reconcile",
        lambda s: "sync" if s.get("result") and controller.session else END,
        ["sync", END],
    )
    sg.add_edge("fail", END)
    sg.add_edge("sync", END)

    return sg.compile()
