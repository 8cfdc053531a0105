import uvicorn

from doctrust.main import app

if __name__ == "__main__":
    uvicorn.run("doctrust.main:app", host="0.0.0.0", port=8000, reload=True)
