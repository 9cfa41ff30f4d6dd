import uvicorn

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
        # Exclude job working areas (generated scenes, audio, renders) from the reload watcher
        reload_excludes=[".manim_jobs/*", ".manim_jobs/**/*"]
    )
