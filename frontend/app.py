import datetime
import uuid

import streamlit as st

from frontend.api_client import (
    BACKEND_URL,
    call_generate,
    call_generate_3d,
    list_jobs,
    load_image,
    poll_job,
    poll_until_done,
)

PROVIDERS = {
    "🌐 Remote (Stability → OpenAI)": "remote",
    "🖥️ ComfyUI local": "comfy",
}


# ==========================
# Cấu hình
# ==========================
st.set_page_config(
    page_title="MediaGen Console",
    page_icon="🎨",
    layout="wide"
)

st.title("🎨 MediaGen Console")
st.caption("Sinh ảnh 2D / model 3D qua ComfyUI hoặc API remote")

# ==========================
# State
# ==========================
if "messages" not in st.session_state:
    st.session_state["messages"] = []

if "session_id" not in st.session_state:
    st.session_state["session_id"] = f"session_{uuid.uuid4().hex[:12]}"

session_id = st.session_state["session_id"]

# ==========================
# Sidebar
# ==========================
with st.sidebar:
    st.header("⚙️ Cài đặt")

    provider_label = st.radio("🎯 Provider", list(PROVIDERS))
    provider = PROVIDERS[provider_label]

    api_key = st.text_input("🔑 API key", type="password", help="Không cần cho ComfyUI local")

    col_w, col_h = st.columns(2)
    width = col_w.number_input("Width", min_value=0, max_value=2048, value=1024, step=64)
    height = col_h.number_input("Height", min_value=0, max_value=2048, value=1024, step=64)

    st.markdown("---")
    st.subheader("🧊 3D")
    provider_3d = st.selectbox("Provider 3D", ["tripo", "meshy"])
    prompt_3d = st.text_input("Prompt 3D")
    if st.button("Tạo model 3D", use_container_width=True, disabled=not prompt_3d):
        data = call_generate_3d(provider_3d, "text-to-3d", api_key, prompt=prompt_3d, session_id=session_id)
        if data.get("success"):
            with st.spinner(f"🧊 Job `{data.get('id')}` đang chạy..."):
                job = poll_until_done(data["id"], session_id, timeout_sec=300.0)
            if job is None:
                st.info("⏳ Chưa xong, xem tiếp ở mục Background jobs")
            elif job["status"] == "SUCCEEDED":
                st.success(f"✅ [Tải model 3D]({job.get('result_url')})")
            else:
                st.error(f"❌ {job.get('error_message') or 'Lỗi'}")
        else:
            st.error(f"❌ {data.get('message', 'Lỗi không xác định')}")

    st.markdown("---")
    st.write("🔗 Backend:", BACKEND_URL)

# ==========================
# Background jobs
# ==========================
jobs = list_jobs(session_id)
if jobs:
    with st.expander(f"⏳ Background jobs ({len(jobs)})", expanded=True):
        for job in jobs:
            status = job.get("status")
            progress = job.get("progress") or 0
            cols = st.columns([3, 2, 1])
            cols[0].markdown(f"**{job.get('type')}** · {job.get('provider')} · `{job.get('id')}`")
            if status in ("SUCCEEDED", "FAILED"):
                cols[1].markdown("✅ Xong" if status == "SUCCEEDED" else f"❌ {job.get('error_message') or 'Lỗi'}")
            else:
                cols[1].progress(min(max(progress, 0.0), 1.0), text=f"{status} {int(progress * 100)}%")
                if cols[2].button("🔄 Poll", key=f"poll_{job.get('id')}"):
                    poll_job(job["id"], session_id)
                    st.rerun()
            if status == "SUCCEEDED" and job.get("result_url"):
                st.markdown(f"🔗 [Kết quả]({job['result_url']})")

# ==========================
# Hiển thị lịch sử chat
# ==========================
for msg in st.session_state["messages"]:
    with st.chat_message(msg["role"]):
        st.markdown(msg["content"])
        if "image" in msg:
            st.image(msg["image"], use_container_width=True)
        if msg.get("download_data"):
            st.download_button(
                "⬇️ Tải ảnh",
                data=msg["download_data"],
                file_name=f"mediagen_{msg['timestamp']}.png",
                mime="image/png",
                key=f"download_{msg['timestamp']}"
            )

# ==========================
# Ô nhập prompt
# ==========================
user_prompt = st.chat_input("💭 Nhập mô tả ảnh...")

if user_prompt:
    st.session_state["messages"].append({"role": "user", "content": user_prompt})

    with st.chat_message("assistant"):
        with st.spinner("🎨 Đang tạo ảnh..."):
            data = call_generate(
                user_prompt,
                provider,
                api_key=api_key or None,
                width=int(width) or None,
                height=int(height) or None,
                session_id=session_id,
            )

        if not data.get("success"):
            content = f"❌ Lỗi: {data.get('message', 'Lỗi không xác định')}"
            st.session_state["messages"].append({"role": "assistant", "content": content})
        elif data.get("prompt_id"):
            content = f"✅ Đã queue trên ComfyUI, prompt_id: `{data['prompt_id']}`"
            st.session_state["messages"].append({"role": "assistant", "content": content})
        elif data.get("image_url"):
            image, img_bytes = load_image(data["image_url"])
            ts = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
            st.session_state["messages"].append({
                "role": "assistant",
                "content": f"✨ Ảnh từ **{data.get('provider')}**",
                "image": image,
                "download_data": img_bytes,
                "timestamp": ts,
            })
        else:
            st.session_state["messages"].append({
                "role": "assistant",
                "content": "⚠️ Phản hồi không hợp lệ từ server",
            })

    st.rerun()
