"""
核心業務邏輯層

這個 package 包含所有核心業務邏輯，包括：
- 狀態機：集中管理 Round 狀態轉換
- Manager：管理 Round、注單、結算與錢包
- Events：即時事件匯流排（WebSocket 推播）
- Scheduler：回合時鐘
- Locks：並發控制工具
"""
