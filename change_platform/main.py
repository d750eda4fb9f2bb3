from change_platform.api.main import app

if __name__ == "__main__":
    import os
    import uvicorn
    host = os.getenv("CHANGE_HOST", "0.0.0.0")
    port = int(os.getenv("CHANGE_PORT", "5000"))
    uvicorn.run(app, host=host, port=port)
