"""
播放引擎测试 - 曲目推进、跳过、上一首、停止和事件处理
"""

import asyncio

import pytest

from radiobot.core.errors import DecodeError, NotConnected
from radiobot.core.interfaces import PlayerState

from conftest import FakePipeline, FakeTrackSource, GUILD_ID, TRACKS


async def join(engine, voice_channel, links):
    await engine.join(voice_channel)
    return links[-1]


class TestPlayOrResume:
    """测试开始/继续播放"""

    @pytest.mark.asyncio
    async def test_not_connected_raises(self, engine):
        """没有语音连接时抛出 NotConnected"""
        with pytest.raises(NotConnected):
            await engine.play_or_resume()

    @pytest.mark.asyncio
    async def test_starts_first_track(self, engine, voice_channel, links):
        """首次播放从列表第一首开始"""
        link = await join(engine, voice_channel, links)

        track = await engine.play_or_resume()

        assert track == TRACKS[0]
        assert engine.cursor == 0
        assert engine.now_playing().title == "a.mp3"
        assert engine.player_state is PlayerState.BUFFERING
        assert engine.status is PlayerState.PLAYING
        assert link.current[0].track_path == TRACKS[0]

    @pytest.mark.asyncio
    async def test_first_frame_moves_to_playing(self, engine, voice_channel, links):
        """第一帧送出后状态变为 PLAYING"""
        link = await join(engine, voice_channel, links)
        await engine.play_or_resume()

        link.start_audio()
        await asyncio.sleep(0)

        assert engine.player_state is PlayerState.PLAYING

    @pytest.mark.asyncio
    async def test_already_playing_returns_current(self, engine, voice_channel, links, pipeline):
        """正在播放时不重新加载"""
        await join(engine, voice_channel, links)
        await engine.play_or_resume()

        track = await engine.play_or_resume()

        assert track == TRACKS[0]
        assert pipeline.opened == [TRACKS[0]]

    @pytest.mark.asyncio
    async def test_paused_resumes_in_place(self, engine, voice_channel, links, pipeline):
        """暂停时继续播放同一首"""
        link = await join(engine, voice_channel, links)
        await engine.play_or_resume()
        assert engine.pause() is True

        track = await engine.play_or_resume()

        assert track == TRACKS[0]
        assert engine.player_state is PlayerState.PLAYING
        assert link.paused is False
        assert pipeline.opened == [TRACKS[0]]


class TestAdvance:
    """测试曲目推进算法"""

    @pytest.mark.asyncio
    async def test_natural_end_advances(self, engine, voice_channel, links):
        """曲目自然结束后自动播放下一首"""
        link = await join(engine, voice_channel, links)
        await engine.play_or_resume()

        link.finish()
        await engine.flush_events()

        assert engine.current_track == TRACKS[1]
        assert engine.cursor == 1
        assert engine.now_playing().title == "b.mp3"

    @pytest.mark.asyncio
    async def test_wraps_to_start(self, engine, voice_channel, links):
        """最后一首结束后回到第一首"""
        link = await join(engine, voice_channel, links)
        await engine.play_or_resume()

        for _ in range(3):
            link.finish()
            await engine.flush_events()

        assert engine.current_track == TRACKS[0]

    @pytest.mark.asyncio
    async def test_skips_undecodable_track(self, voice_channel, links, link_factory):
        """无法解码的曲目被跳过，错误被记录"""
        from radiobot.playback.connection_manager import ConnectionManager
        from radiobot.playback.playback_engine import PlaybackEngine

        pipeline = FakePipeline(failing={"b.mp3"})
        manager = ConnectionManager(GUILD_ID, link_factory, connect_timeout=1.0)
        engine = PlaybackEngine(GUILD_ID, FakeTrackSource(), pipeline, manager)
        link = await join(engine, voice_channel, links)
        await engine.play_or_resume()

        link.finish()
        await engine.flush_events()

        assert engine.current_track == TRACKS[2]
        assert pipeline.opened == [TRACKS[0], TRACKS[1], TRACKS[2]]
        assert "b.mp3" in engine.get_last_error()
        assert "Input stream failed" in engine.get_last_error()

    @pytest.mark.asyncio
    async def test_all_tracks_fail_is_bounded(self, voice_channel, links, link_factory):
        """所有曲目都失败时只尝试一整圈"""
        from radiobot.playback.connection_manager import ConnectionManager
        from radiobot.playback.playback_engine import PlaybackEngine

        pipeline = FakePipeline(failing={"a.mp3", "b.mp3", "c.mp3"})
        manager = ConnectionManager(GUILD_ID, link_factory, connect_timeout=1.0)
        engine = PlaybackEngine(GUILD_ID, FakeTrackSource(), pipeline, manager)
        await join(engine, voice_channel, links)

        track = await engine.play_or_resume()

        assert track is None
        assert engine.current_track is None
        assert len(pipeline.opened) == 3
        assert "c.mp3" in engine.get_last_error()

    @pytest.mark.asyncio
    async def test_empty_library(self, engine, voice_channel, links, track_source):
        """曲库为空时返回 None 并记录原因"""
        await join(engine, voice_channel, links)
        track_source.tracks = []

        track = await engine.play_or_resume()

        assert track is None
        assert engine.cursor == -1
        assert engine.get_last_error() == "Library is empty"

    @pytest.mark.asyncio
    async def test_not_connected_records_error(self, engine):
        """没有连接时推进失败并记录原因"""
        track = await engine.advance()

        assert track is None
        assert engine.get_last_error() == "Not connected to a voice channel."

    @pytest.mark.asyncio
    async def test_single_flight(self, engine, voice_channel, links, pipeline):
        """同一会话同时只有一个推进操作"""
        await join(engine, voice_channel, links)
        pipeline.gate = asyncio.Event()

        first = asyncio.ensure_future(engine.advance())
        await asyncio.sleep(0)
        second = await engine.advance()
        pipeline.gate.set()
        first_result = await first

        assert second is None
        assert first_result == TRACKS[0]
        assert pipeline.opened == [TRACKS[0]]

    @pytest.mark.asyncio
    async def test_list_refreshed_each_advance(self, engine, voice_channel, links, track_source):
        """每次推进都重新读取曲目列表"""
        link = await join(engine, voice_channel, links)
        await engine.play_or_resume()
        track_source.tracks = TRACKS + ["/music/d.mp3"]

        link.finish()
        await engine.flush_events()

        assert track_source.calls == 2
        assert engine.track_list[-1] == "/music/d.mp3"


class TestSkip:
    """测试跳过"""

    @pytest.mark.asyncio
    async def test_skip_returns_skipped_track(self, engine, voice_channel, links):
        """跳过返回被跳过的曲目，由结束处理器推进"""
        await join(engine, voice_channel, links)
        await engine.play_or_resume()

        skipped = await engine.skip()
        await engine.flush_events()

        assert skipped == TRACKS[0]
        assert engine.current_track == TRACKS[1]

    @pytest.mark.asyncio
    async def test_skip_laps_back_to_start(self, engine, voice_channel, links):
        """连续跳过一整圈回到原曲目，每首只访问一次"""
        await join(engine, voice_channel, links)
        await engine.play_or_resume()

        visited = []
        for _ in range(len(TRACKS)):
            await engine.skip()
            await engine.flush_events()
            visited.append(engine.current_track)

        assert visited == [TRACKS[1], TRACKS[2], TRACKS[0]]

    @pytest.mark.asyncio
    async def test_skip_empty_library(self, engine, voice_channel, links, track_source):
        """曲库为空时没有可跳过的内容"""
        await join(engine, voice_channel, links)
        track_source.tracks = []

        assert await engine.skip() is None

    @pytest.mark.asyncio
    async def test_skip_while_idle_does_not_advance(self, engine, voice_channel, links, pipeline):
        """空闲时跳过不会开始播放"""
        await join(engine, voice_channel, links)

        skipped = await engine.skip()
        await engine.flush_events()

        assert skipped is None
        assert pipeline.opened == []


class TestPrev:
    """测试上一首"""

    @pytest.mark.asyncio
    async def test_prev_from_fresh_session_wraps_to_last(self, engine, voice_channel, links):
        """新会话的上一首是列表最后一首"""
        await join(engine, voice_channel, links)

        track = await engine.prev()

        assert track == TRACKS[-1]
        assert engine.cursor == len(TRACKS) - 1

    @pytest.mark.asyncio
    async def test_prev_does_not_double_advance(self, engine, voice_channel, links, pipeline):
        """上一首自己加载曲目，旧曲目的结束不会再触发推进"""
        await join(engine, voice_channel, links)
        await engine.play_or_resume()
        await engine.skip()
        await engine.flush_events()
        assert engine.current_track == TRACKS[1]

        track = await engine.prev()
        await engine.flush_events()

        assert track == TRACKS[0]
        assert engine.current_track == TRACKS[0]
        assert pipeline.opened == [TRACKS[0], TRACKS[1], TRACKS[0]]
        assert engine._stopped_streams == set()

    @pytest.mark.asyncio
    async def test_prev_decode_failure(self, voice_channel, links, link_factory):
        """上一首解码失败时返回 None 并保持空闲"""
        from radiobot.playback.connection_manager import ConnectionManager
        from radiobot.playback.playback_engine import PlaybackEngine

        pipeline = FakePipeline(failing={"c.mp3"})
        manager = ConnectionManager(GUILD_ID, link_factory, connect_timeout=1.0)
        engine = PlaybackEngine(GUILD_ID, FakeTrackSource(), pipeline, manager)
        await join(engine, voice_channel, links)
        await engine.play_or_resume()

        track = await engine.prev()
        await engine.flush_events()

        assert track is None
        assert engine.current_track is None
        assert engine.player_state is PlayerState.IDLE
        assert "c.mp3" in engine.get_last_error()
        assert pipeline.opened == [TRACKS[0], TRACKS[2]]


    @pytest.mark.asyncio
    async def test_concurrent_prev_is_single_flight(self, engine, voice_channel, links, pipeline):
        """同时两次上一首只解码一次"""
        await join(engine, voice_channel, links)
        pipeline.gate = asyncio.Event()

        first = asyncio.ensure_future(engine.prev())
        await asyncio.sleep(0)
        second = await engine.prev()
        pipeline.gate.set()
        first_result = await first

        assert second is None
        assert first_result == TRACKS[-1]
        assert pipeline.opened == [TRACKS[-1]]

    @pytest.mark.asyncio
    async def test_prev_during_advance_is_ignored(self, engine, voice_channel, links, pipeline):
        """推进进行中时上一首不会再解码"""
        await join(engine, voice_channel, links)
        pipeline.gate = asyncio.Event()

        advancing = asyncio.ensure_future(engine.advance())
        await asyncio.sleep(0)
        previous = await engine.prev()
        pipeline.gate.set()
        await advancing

        assert previous is None
        assert engine.current_track == TRACKS[0]
        assert engine.cursor == 0
        assert pipeline.opened == [TRACKS[0]]


class TestStopPauseResume:
    """测试停止、暂停和继续"""

    @pytest.mark.asyncio
    async def test_stop_does_not_advance(self, engine, voice_channel, links, pipeline):
        """停止后结束事件被消费，不会自动推进"""
        await join(engine, voice_channel, links)
        await engine.play_or_resume()

        engine.stop()
        await engine.flush_events()

        assert engine.current_track is None
        assert engine.now_playing() is None
        assert engine.player_state is PlayerState.IDLE
        assert engine.connection is not None
        assert pipeline.opened == [TRACKS[0]]
        assert engine._stopped_streams == set()

    @pytest.mark.asyncio
    async def test_stop_right_after_skip_does_not_advance(self, engine, voice_channel, links, pipeline):
        """跳过的结束事件尚未处理时停止，不会再加载下一首"""
        await join(engine, voice_channel, links)
        await engine.play_or_resume()

        await engine.skip()
        engine.stop()
        await engine.flush_events()

        assert engine.current_track is None
        assert engine.player_state is PlayerState.IDLE
        assert pipeline.opened == [TRACKS[0]]
        assert engine._stopped_streams == set()
        assert engine._pending_streams == set()

    @pytest.mark.asyncio
    async def test_stop_with_queued_natural_end_does_not_advance(self, engine, voice_channel, links, pipeline):
        """自然结束事件已到达但尚未处理时停止，不会自动推进"""
        link = await join(engine, voice_channel, links)
        await engine.play_or_resume()

        link.finish()
        engine.stop()
        await engine.flush_events()

        assert engine.current_track is None
        assert pipeline.opened == [TRACKS[0]]

    @pytest.mark.asyncio
    async def test_stop_while_idle_leaves_no_intent(self, engine, voice_channel, links):
        """空闲时停止不会吞掉之后的结束事件"""
        link = await join(engine, voice_channel, links)
        engine.stop()
        assert engine._stopped_streams == set()

        await engine.play_or_resume()
        link.finish()
        await engine.flush_events()

        assert engine.current_track == TRACKS[1]

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, engine, voice_channel, links):
        """暂停和继续只在对应状态下生效"""
        link = await join(engine, voice_channel, links)
        assert engine.pause() is False
        assert engine.resume() is False

        await engine.play_or_resume()
        assert engine.pause() is True
        assert engine.status is PlayerState.PAUSED
        assert link.paused is True
        assert engine.pause() is False

        assert engine.resume() is True
        assert engine.status is PlayerState.PLAYING
        assert engine.current_track == TRACKS[0]
        assert engine.cursor == 0


class TestSinkErrors:
    """测试播放器错误处理"""

    @pytest.mark.asyncio
    async def test_stream_error_advances(self, engine, voice_channel, links):
        """播放中途解码失败时自动推进到下一首"""
        link = await join(engine, voice_channel, links)
        await engine.play_or_resume()

        link.finish(DecodeError("transcoder", "a.mp3", "Exit code 1", label="FFmpeg exited unexpectedly"))
        await engine.flush_events()

        assert engine.current_track == TRACKS[1]

    @pytest.mark.asyncio
    async def test_error_after_stop_is_consumed(self, engine, voice_channel, links, pipeline):
        """已停止的曲目报告的错误不会触发推进"""
        link = await join(engine, voice_channel, links)
        await engine.play_or_resume()
        _, after = link.current
        link.current = None

        engine.stop()
        after(DecodeError("buffer", "a.mp3", "closed"))
        await engine.flush_events()

        assert engine.current_track is None
        assert pipeline.opened == [TRACKS[0]]
        assert engine._stopped_streams == set()


class TestConnection:
    """测试连接相关操作"""

    @pytest.mark.asyncio
    async def test_leave_tears_down(self, engine, voice_channel, links):
        """离开时停止播放并销毁连接"""
        link = await join(engine, voice_channel, links)
        await engine.play_or_resume()

        await engine.leave()
        await engine.flush_events()

        assert engine.connection is None
        assert engine.channel_id is None
        assert link.destroyed is True
        assert engine.player_state is PlayerState.IDLE
        assert engine.current_track is None

    @pytest.mark.asyncio
    async def test_state_listener_notified(self, engine, voice_channel, links):
        """播放器状态变化通知观察者"""
        changes = []
        engine.add_state_listener(lambda guild_id, state: changes.append((guild_id, state)))
        await join(engine, voice_channel, links)

        await engine.play_or_resume()
        engine.stop()

        assert changes == [(GUILD_ID, PlayerState.BUFFERING), (GUILD_ID, PlayerState.IDLE)]

    @pytest.mark.asyncio
    async def test_close_stops_worker(self, engine, voice_channel, links):
        """关闭后事件处理任务被取消"""
        link = await join(engine, voice_channel, links)
        await engine.play_or_resume()
        link.finish()
        await engine.flush_events()

        await engine.close()

        assert engine._worker is None
