from automation_engine.main import app  # pragma: no cover

# Allows `python -m automation_engine` to run uvicorn programmatically.
if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
