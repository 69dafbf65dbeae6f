"""
Racing Academy Backend — Uvicorn Launcher
Run this file to start the development server.

Usage:
    python run.py
    python run.py --port 8000
    python run.py --reload
"""
import argparse
import uvicorn


def main():
    parser = argparse.ArgumentParser(description="Racing Academy Enrollment Backend Server")
    parser.add_argument("--host", default="0.0.0.0", help="Bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Enable hot reload for development")
    parser.add_argument("--workers", type=int, default=1, help="Number of workers (default: 1)")

    args = parser.parse_args()

    base = f"http://localhost:{args.port}"
    print(f"""
    ========================================================
      Racing Academy -- Enrollment Backend
      Courses:     {base}/api/courses
      Enrollment:  {base}/api/enrollment  (header: flow-id)
      Admin:       {base}/api/admin/dashboard
      Health:      {base}/health
      Docs:        {base}/docs
    ========================================================
    """)

    uvicorn.run(
        "academy.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=args.workers,
        log_level="info",
    )


if __name__ == "__main__":
    main()
