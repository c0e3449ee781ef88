from __future__ import annotations

import sys
from pathlib import Path

import streamlit as st
from openai import OpenAI

# Ensure repo-root imports (e.g., db.index) work when Streamlit runs the
# script with app/ as the working directory.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from db.index import build_search_index
from ingest.config import Settings, load_settings
from ingest.errors import IngestError


@st.cache_resource
def settings() -> Settings:
    return load_settings()


@st.cache_resource
def openai_client() -> OpenAI:
    return OpenAI(api_key=settings().openai_api_key)


def embed_query(query: str) -> list[float]:
    response = openai_client().embeddings.create(model=settings().openai_embed_model, input=[query])
    return response.data[0].embedding


def build_context(rows: list[dict]) -> str:
    blocks = []
    for i, row in enumerate(rows, start=1):
        blocks.append(
            f"[Source {i}]\n"
            f"File: {row.get('file_path') or row.get('file_name')}\n"
            f"Last Updated: {row.get('updated_at')}\n"
            f"URL: {row.get('file_web_url')}\n"
            f"Content:\n{row.get('content', '')}\n"
        )
    return "\n".join(blocks)


def generate_answer(question: str, context: str) -> str:
    system_prompt = (
        "You answer questions about the documents in the indexed OneDrive folder. "
        "Use only the retrieved context. Cite sources inline using [Source X]. "
        "If the context is insufficient, say so instead of guessing."
    )
    response = openai_client().chat.completions.create(
        model=settings().openai_chat_model,
        temperature=0.1,
        messages=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": f"Question: {question}\n\nContext:\n{context}"},
        ],
    )
    return response.choices[0].message.content or "No answer generated."


def main() -> None:
    st.set_page_config(page_title="OneDrive Knowledge Assistant", layout="wide")
    st.title("OneDrive Knowledge Assistant")

    with st.sidebar:
        st.header("Retrieval")
        show_context = st.toggle("Show retrieved context", value=False)
        top_k = st.slider("Top-k chunks", min_value=3, max_value=15, value=5)

        try:
            st.caption(f"Indexed chunks: {build_search_index(settings()).count()}")
        except IngestError as exc:
            st.caption(f"Index unavailable: {exc}")

    if "messages" not in st.session_state:
        st.session_state.messages = []

    for message in st.session_state.messages:
        with st.chat_message(message["role"]):
            st.markdown(message["content"])

    question = st.chat_input("Ask about your documents...")
    if not question:
        return

    st.session_state.messages.append({"role": "user", "content": question})
    with st.chat_message("user"):
        st.markdown(question)

    with st.chat_message("assistant"):
        with st.spinner("Searching documents..."):
            index = build_search_index(settings())
            rows = index.search(embed_query(question), top_k=top_k)
            context = build_context(rows)
            answer = generate_answer(question, context)

        st.markdown(answer)
        st.subheader("Sources used")
        seen: set[str] = set()
        for row in rows:
            url = row.get("file_web_url") or ""
            if url in seen:
                continue
            seen.add(url)
            with st.container(border=True):
                st.markdown(f"**{row.get('file_name')}**")
                st.markdown(f"- Path: {row.get('file_path')}")
                st.markdown(f"- Last updated: {row.get('updated_at')}")
                if url:
                    st.link_button("Open document", url)

        if show_context:
            with st.expander("Show retrieved context"):
                st.code(context)

    st.session_state.messages.append({"role": "assistant", "content": answer})


if __name__ == "__main__":
    main()
